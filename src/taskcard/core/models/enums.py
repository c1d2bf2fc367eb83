"""枚举定义

包含 TaskStatus 状态机、TaskType、NotificationKind 枚举，
以及个人任务的 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    # 活跃状态
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"

    # 终态
    DONE = "done"
    CANCELLED = "cancelled"


class TaskType(StrEnum):
    """任务类型，创建时确定，之后不可变更"""

    PERSONAL = "personal"
    BROADCAST = "broadcast"


# 个人任务合法流转：非终态之间可自由切换，可直接完成；
# CANCELLED 只能经由取消操作进入（仅依赖者）
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.OPEN: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.WAITING,
        TaskStatus.DONE,
        TaskStatus.CANCELLED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.OPEN,
        TaskStatus.WAITING,
        TaskStatus.DONE,
        TaskStatus.CANCELLED,
    },
    TaskStatus.WAITING: {
        TaskStatus.OPEN,
        TaskStatus.IN_PROGRESS,
        TaskStatus.DONE,
        TaskStatus.CANCELLED,
    },
    # 终态不可再流转
    TaskStatus.DONE: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.DONE,
    TaskStatus.CANCELLED,
}

ACTIVE_STATES: set[TaskStatus] = {
    TaskStatus.OPEN,
    TaskStatus.IN_PROGRESS,
    TaskStatus.WAITING,
}


class NotificationKind(StrEnum):
    """通知类型 -- 核心只提供类型和任务，渲染文案由展示层负责"""

    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    WAITING_FOR_CONFIRMATION = "waiting_for_confirmation"
    TASK_EDITED = "task_edited"
    TASK_CANCELLED = "task_cancelled"
    DUE_REMINDER = "due_reminder"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证个人任务状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def is_terminal(status: TaskStatus) -> bool:
    """终态判断"""
    return status in TERMINAL_STATES
