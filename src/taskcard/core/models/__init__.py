"""TaskCard Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .commands import (
    CancelTask,
    ChangeStatus,
    CompleteTask,
    ConfirmBroadcastDone,
    CreateTask,
    EditTask,
    TaskCommand,
)
from .enums import (
    ACTIVE_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    NotificationKind,
    TaskStatus,
    TaskType,
    is_terminal,
    validate_transition,
)
from .task import ContentPatch, Task, TaskCompletion, TaskTarget, ThreadCard

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskType",
    "NotificationKind",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTIVE_STATES",
    "validate_transition",
    "is_terminal",
    # Task
    "Task",
    "TaskTarget",
    "TaskCompletion",
    "ThreadCard",
    "ContentPatch",
    # Commands
    "TaskCommand",
    "CreateTask",
    "ChangeStatus",
    "CompleteTask",
    "EditTask",
    "CancelTask",
    "ConfirmBroadcastDone",
]
