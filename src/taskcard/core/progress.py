"""群发任务进度追踪

每次记录个人完成后调用 evaluate()：以 task_completions 行数为准重算计数，
刷新 completed_count 缓存，推进状态（open -> in_progress -> waiting），
全员完成时通过 mark_notified 的条件更新保证只通知依赖者一次。
"""

import structlog
from pydantic import BaseModel, Field

from .errors import ConflictError, InvalidTaskError
from .models.enums import TERMINAL_STATES, TaskStatus
from .store.protocols import TaskStore

log = structlog.get_logger()

# 群发状态只前进不后退
_PROGRESS_RANK: dict[TaskStatus, int] = {
    TaskStatus.OPEN: 0,
    TaskStatus.IN_PROGRESS: 1,
    TaskStatus.WAITING: 2,
}


def derive_state(status: TaskStatus, completed: int, total: int) -> TaskStatus:
    """由完成人数推导群发任务应处的状态

    终态优先；否则 0 人完成为 open，部分完成为 in_progress，
    全员完成（且 total > 0）为 waiting。
    """
    if status in TERMINAL_STATES:
        return status
    if completed <= 0:
        return TaskStatus.OPEN
    if total > 0 and completed >= total:
        return TaskStatus.WAITING
    return TaskStatus.IN_PROGRESS


class ProgressSnapshot(BaseModel):
    """一次进度评估的结果"""

    task_id: str
    completed: int = Field(description="权威完成人数（按完成记录计数）")
    total: int = Field(description="目标总数")
    derived_state: TaskStatus = Field(description="按计数推导的状态")
    status: TaskStatus = Field(description="评估后持久化的状态")
    should_notify_requester: bool = Field(
        default=False,
        description="本次调用赢得了全员完成通知的单次触发",
    )

    @property
    def all_done(self) -> bool:
        return self.total > 0 and self.completed >= self.total


class BroadcastProgressTracker:
    """群发任务进度追踪器"""

    def __init__(self, task_store: TaskStore) -> None:
        self._tasks = task_store

    async def evaluate(self, team_id: str, task_id: str) -> ProgressSnapshot:
        """重算进度并推进状态

        并发调用安全：状态推进使用条件更新，冲突时以最新状态为准；
        全员完成通知由 mark_notified 决出唯一胜者，其余调用静默跳过。
        """
        task = await self._tasks.get_task(team_id, task_id)
        if not task.is_broadcast:
            raise InvalidTaskError(f"Task {task_id} is not a broadcast task")

        total = await self._tasks.count_targets(team_id, task_id)
        completed = await self._tasks.refresh_completed_count(team_id, task_id)
        derived = derive_state(task.status, completed, total)

        status = task.status
        # 冲突后以最新状态重试；状态只前进，循环次数有上界
        while status not in TERMINAL_STATES and _PROGRESS_RANK[derived] > _PROGRESS_RANK[status]:
            try:
                updated = await self._tasks.update_status(
                    team_id,
                    task_id,
                    derived,
                    expected_statuses={status},
                )
            except ConflictError:
                # 并发请求已推进或终结该任务
                status = (await self._tasks.get_task(team_id, task_id)).status
                continue
            log.info(
                "broadcast_status_advanced",
                task_id=task_id,
                from_status=status.value,
                to_status=derived.value,
                completed=completed,
                total=total,
            )
            status = updated.status

        should_notify = False
        if total > 0 and completed >= total and status not in TERMINAL_STATES:
            should_notify = await self._tasks.mark_notified(team_id, task_id)
            if should_notify:
                log.info("broadcast_all_done", task_id=task_id, total=total)

        return ProgressSnapshot(
            task_id=task_id,
            completed=completed,
            total=total,
            derived_state=derived,
            status=status,
            should_notify_requester=should_notify,
        )
