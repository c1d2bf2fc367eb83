"""Store Protocol 接口定义

定义 TaskStore、ThreadCardStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
生命周期控制器与进度追踪器只依赖这些接口。
"""

from collections.abc import Collection, Iterable
from datetime import date
from typing import Protocol

from ..models.enums import TaskStatus
from ..models.task import ContentPatch, Task, ThreadCard


class TaskStore(Protocol):
    """Task 存储接口

    所有操作按 team_id 隔离，行不存在时抛出 NotFoundError。
    """

    async def create_task(self, task: Task, commit: bool = True) -> Task:
        """创建任务记录（校验 task_type 一致性）"""
        ...

    async def get_task(self, team_id: str, task_id: str) -> Task:
        """查询任务"""
        ...

    async def update_status(
        self,
        team_id: str,
        task_id: str,
        status: TaskStatus,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """更新状态；进入 done 时记录 completed_at"""
        ...

    async def update_content(
        self,
        team_id: str,
        task_id: str,
        patch: ContentPatch,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """部分更新内容字段"""
        ...

    async def cancel_task(
        self,
        team_id: str,
        task_id: str,
        actor_user_id: str,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """取消任务"""
        ...

    async def insert_targets(
        self,
        team_id: str,
        task_id: str,
        user_ids: Iterable[str],
        commit: bool = True,
    ) -> None:
        """写入群发目标（重复忽略）"""
        ...

    async def record_completion(self, team_id: str, task_id: str, user_id: str) -> bool:
        """记录个人完成（重复或任务已终结时不写入），返回是否新写入"""
        ...

    async def count_targets(self, team_id: str, task_id: str) -> int: ...

    async def count_completions(self, team_id: str, task_id: str) -> int: ...

    async def is_target(self, team_id: str, task_id: str, user_id: str) -> bool: ...

    async def has_completed(self, team_id: str, task_id: str, user_id: str) -> bool: ...

    async def list_target_ids(self, team_id: str, task_id: str) -> list[str]: ...

    async def list_completion_ids(self, team_id: str, task_id: str) -> list[str]: ...

    async def refresh_completed_count(self, team_id: str, task_id: str) -> int:
        """按完成记录重算 completed_count 缓存"""
        ...

    async def mark_notified(self, team_id: str, task_id: str) -> bool:
        """单次触发标记；仅一个调用方返回 True"""
        ...

    async def mark_reminded(self, team_id: str, task_id: str) -> bool: ...

    async def list_due_for_reminder(self, day: date, limit: int = 500) -> list[Task]: ...


class ThreadCardStore(Protocol):
    """线程卡片映射存储接口"""

    async def get_card(
        self,
        team_id: str,
        channel_id: str,
        message_ts: str,
    ) -> ThreadCard | None:
        """查询来源消息对应的卡片"""
        ...

    async def upsert_card(
        self,
        team_id: str,
        channel_id: str,
        message_ts: str,
        card_ts: str,
    ) -> ThreadCard:
        """写入或更新卡片映射"""
        ...
