"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、标题截断长度、提醒任务时区/时刻、部门缓存 TTL 等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKCARD_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKCARD_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskcard.db"),
    )


def get_timezone_name() -> str:
    """获取到期提醒使用的时区（决定“今天”是哪一天）"""
    return os.environ.get("TASKCARD_TIMEZONE", "Asia/Tokyo")


def get_reminder_hour() -> int:
    """获取每日到期提醒的触发时刻（0-23，按 TASKCARD_TIMEZONE 计）"""
    try:
        hour = int(os.environ.get("TASKCARD_REMINDER_HOUR", "9"))
    except ValueError:
        return 9
    return min(max(hour, 0), 23)


def reminders_enabled() -> bool:
    """是否在应用生命周期内启动到期提醒后台任务"""
    return os.environ.get("TASKCARD_REMINDERS_ENABLED", "true").lower() == "true"


def run_reminders_now() -> bool:
    """启动时立即执行一次到期提醒（调试用）"""
    return os.environ.get("TASKCARD_RUN_REMINDERS_NOW", "false").lower() == "true"


# 自动生成标题的最大长度（超过截断并追加省略号）
TITLE_MAX_LENGTH: int = int(os.environ.get("TASKCARD_TITLE_MAX_LENGTH", "22"))

# 部门解析缓存有效期（秒）
DEPT_CACHE_TTL_S: int = int(os.environ.get("TASKCARD_DEPT_CACHE_TTL_S", "3600"))

# 单次到期提醒批处理上限
REMINDER_BATCH_LIMIT: int = int(os.environ.get("TASKCARD_REMINDER_BATCH_LIMIT", "500"))

# Home 看板每个状态分组的条数上限
DASHBOARD_LIST_LIMIT: int = 10

# 卡片中描述预览截断长度
DESCRIPTION_PREVIEW_LENGTH: int = 140
