"""生命周期操作 -- 封闭的 tagged union

外部触发（快捷方式、表情回应、弹窗提交、按钮点击）由入口层映射为以下操作之一，
再交给 TaskLifecycleController.execute() 统一处理。op 字段为判别键。
"""

from datetime import date
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from .enums import TaskStatus
from .task import ContentPatch


class CreateTask(BaseModel):
    """创建任务"""

    op: Literal["create"] = "create"
    team_id: str
    actor_user_id: str = Field(description="操作创建流程的用户")
    requester_user_id: str | None = Field(
        default=None,
        description="依赖者；为空时取 actor_user_id（表情回应创建时可为他人）",
    )
    channel_id: str | None = None
    message_ts: str | None = Field(default=None, description="来源消息标识")
    thread_ts: str | None = Field(default=None, description="会话根消息标识")
    title: str | None = Field(default=None, description="为空时由正文自动生成")
    description: str = ""
    assignee_user_ids: list[str] = Field(default_factory=list, description="个人指定的负责人")
    group_refs: list[str] = Field(default_factory=list, description="用户组引用，创建时展开快照")
    assignee_label: str | None = Field(default=None, description="群发任务显示标签")
    due_date: date | None = None
    initial_status: TaskStatus = TaskStatus.OPEN


class ChangeStatus(BaseModel):
    """修改个人任务状态"""

    op: Literal["change_status"] = "change_status"
    team_id: str
    task_id: str
    actor_user_id: str
    status: TaskStatus


class CompleteTask(BaseModel):
    """完成自己负责的部分（个人任务即整体完成）"""

    op: Literal["complete"] = "complete"
    team_id: str
    task_id: str
    actor_user_id: str


class EditTask(BaseModel):
    """编辑内容 / 负责人 / 截止日期"""

    op: Literal["edit"] = "edit"
    team_id: str
    task_id: str
    actor_user_id: str
    patch: ContentPatch


class CancelTask(BaseModel):
    """取消任务（仅依赖者）"""

    op: Literal["cancel"] = "cancel"
    team_id: str
    task_id: str
    actor_user_id: str


class ConfirmBroadcastDone(BaseModel):
    """确认群发任务完成（任何人均可强制完成）"""

    op: Literal["confirm_done"] = "confirm_done"
    team_id: str
    task_id: str
    actor_user_id: str


TaskCommand = Annotated[
    CreateTask | ChangeStatus | CompleteTask | EditTask | CancelTask | ConfirmBroadcastDone,
    Field(discriminator="op"),
]
