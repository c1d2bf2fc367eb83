"""Task Domain Model

tasks 表是任务状态的唯一事实来源；task_targets / task_completions
记录群发任务的目标快照与逐人完成情况，thread_cards 记录每条来源消息
对应的线程卡片。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .enums import TaskStatus, TaskType


class Task(BaseModel):
    """Task 数据模型

    assignee_id 仅个人任务有值；assignee_label / total_count / completed_count
    仅群发任务有值。task_type 创建后不可变更。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    team_id: str = Field(description="租户分区键，所有查询按 team 隔离")
    channel_id: str | None = Field(default=None, description="来源消息所在频道")
    message_ts: str | None = Field(default=None, description="来源消息标识（卡片幂等键）")
    thread_ts: str | None = Field(default=None, description="会话根消息标识，卡片挂在其下")
    source_permalink: str | None = Field(default=None, description="来源消息永久链接")
    title: str = Field(description="短标题（由正文派生）")
    description: str = Field(default="", description="任务正文")
    requester_user_id: str = Field(description="依赖者")
    created_by_user_id: str = Field(description="实际操作创建流程的用户")
    task_type: TaskType = Field(description="任务类型")
    assignee_id: str | None = Field(default=None, description="个人任务的负责人")
    assignee_label: str | None = Field(default=None, description="群发任务的显示标签，仅用于展示")
    status: TaskStatus = Field(default=TaskStatus.OPEN, description="当前状态")
    due_date: date | None = Field(default=None, description="截止日期（无时间部分）")
    total_count: int | None = Field(default=None, description="群发目标总数")
    completed_count: int | None = Field(default=None, description="群发已完成人数（缓存）")
    notified_at: datetime | None = Field(default=None, description="全员完成通知的单次触发标记")
    reminded_at: datetime | None = Field(default=None, description="到期提醒的单次触发标记")
    requester_dept: str | None = Field(default=None, description="依赖者部门（仅展示）")
    assignee_dept: str | None = Field(default=None, description="负责人部门（仅展示）")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    cancelled_at: datetime | None = Field(default=None, description="取消时间")
    cancelled_by_user_id: str | None = Field(default=None, description="取消操作者")

    @property
    def is_broadcast(self) -> bool:
        return self.task_type == TaskType.BROADCAST

    @property
    def card_key(self) -> tuple[str, str, str] | None:
        """线程卡片键 (team, channel, message_ts)；无来源消息时为 None"""
        if not self.channel_id or not self.message_ts:
            return None
        return (self.team_id, self.channel_id, self.message_ts)


class TaskTarget(BaseModel):
    """群发任务目标快照（创建后不可变）"""

    task_id: str
    user_id: str
    created_at: datetime


class TaskCompletion(BaseModel):
    """群发任务中某个目标的个人完成记录"""

    task_id: str
    user_id: str
    completed_at: datetime


class ThreadCard(BaseModel):
    """来源消息 -> 已发布卡片消息 的映射"""

    card_id: str = Field(description="唯一标识，ULID 格式")
    team_id: str
    channel_id: str
    message_ts: str = Field(description="来源消息标识")
    card_ts: str = Field(description="已发布卡片的消息标识")
    updated_at: datetime


class ContentPatch(BaseModel):
    """内容编辑的部分更新

    due_date 区分“未提供”与“显式清空”：只有出现在 model_fields_set 中才会写入。
    其余字段为 None 时保留原值。
    """

    title: str | None = None
    description: str | None = None
    assignee_id: str | None = None
    assignee_dept: str | None = None
    due_date: date | None = None

    @property
    def due_date_provided(self) -> bool:
        return "due_date" in self.model_fields_set
