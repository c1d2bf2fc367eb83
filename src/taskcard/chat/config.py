"""ChatConfig -- Chat 平台配置加载

从环境变量加载配置，bot token 以 SecretStr 保存。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


def _split_handles(raw: str) -> list[str]:
    return [h.strip().lstrip("@") for h in raw.split(",") if h.strip().lstrip("@")]


class ChatConfig(BaseModel):
    """Chat 包配置 -- 从环境变量加载

    环境变量:
        SLACK_BOT_TOKEN: bot token
        SLACK_API_BASE_URL: Web API 基础 URL（默认 https://slack.com/api）
        TASKCARD_CHAT_MODE: 运行模式（slack/memory）
        TASKCARD_CHAT_TIMEOUT_S: 调用超时（秒，默认 10）
        TASKCARD_DEPT_ALL_HANDLES: 代表部门的用户组 handle，逗号分隔
        TASKCARD_DEPT_PRIORITY: 部门匹配优先级，逗号分隔
    """

    bot_token: SecretStr = Field(
        default=SecretStr(""),
        description="Slack bot token（xoxb-...）",
    )
    api_base_url: str = Field(
        default="https://slack.com/api",
        description="Slack Web API 基础 URL",
    )
    chat_mode: Literal["slack", "memory"] = Field(
        default="slack",
        description="Chat 运行模式：slack / memory",
    )
    timeout_s: int = Field(
        default=10,
        ge=1,
        description="API 调用超时（秒）",
    )
    dept_all_handles: list[str] = Field(
        default_factory=list,
        description="部门用户组 handle；为空时使用所有 *-all 用户组",
    )
    dept_priority: list[str] = Field(
        default_factory=list,
        description="用户属于多个部门时的匹配顺序",
    )


def load_chat_config() -> ChatConfig:
    """从环境变量加载 Chat 配置

    Returns:
        ChatConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("SLACK_BOT_TOKEN"):
        kwargs["bot_token"] = SecretStr(val)

    if val := os.environ.get("SLACK_API_BASE_URL"):
        kwargs["api_base_url"] = val.rstrip("/")

    if val := os.environ.get("TASKCARD_CHAT_MODE"):
        if val in ("slack", "memory"):
            kwargs["chat_mode"] = val
        else:
            log.warning(
                "invalid_chat_mode_config",
                env_var="TASKCARD_CHAT_MODE",
                value=val,
                fallback="slack",
            )

    if val := os.environ.get("TASKCARD_CHAT_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="TASKCARD_CHAT_TIMEOUT_S",
                value=val,
                fallback=10,
            )

    if val := os.environ.get("TASKCARD_DEPT_ALL_HANDLES"):
        kwargs["dept_all_handles"] = _split_handles(val)

    if val := os.environ.get("TASKCARD_DEPT_PRIORITY"):
        kwargs["dept_priority"] = _split_handles(val)

    return ChatConfig(**kwargs)
