"""到期提醒任务

每天在 TASKCARD_REMINDER_HOUR（TASKCARD_TIMEZONE 时区）执行一次：
当天到期、未终结且未提醒过的任务，私聊提醒依赖者与负责人
（群发任务为尚未完成的目标）。reminded_at 先行占位，保证每个任务只提醒一次。
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from taskcard.core.config import REMINDER_BATCH_LIMIT
from taskcard.core.models import NotificationKind
from taskcard.core.store.protocols import TaskStore

from .presentation import PresentationPort

log = structlog.get_logger()


def today_in(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


async def run_due_reminders(
    task_store: TaskStore,
    presentation: PresentationPort,
    day: date,
    limit: int = REMINDER_BATCH_LIMIT,
) -> int:
    """执行一轮到期提醒

    单个任务失败只记录日志，不中断整批。

    Returns:
        本轮提醒的任务数
    """
    tasks = await task_store.list_due_for_reminder(day, limit)
    await log.ainfo("due_reminders_started", day=day.isoformat(), candidates=len(tasks))

    reminded = 0
    for task in tasks:
        try:
            if not await task_store.mark_reminded(task.team_id, task.task_id):
                # 并发执行的另一轮已处理
                continue
            if task.is_broadcast:
                targets = await task_store.list_target_ids(task.team_id, task.task_id)
                finished = set(await task_store.list_completion_ids(task.team_id, task.task_id))
                recipients = [u for u in targets if u not in finished]
            else:
                recipients = [task.assignee_id]
            await presentation.notify_users(
                {task.requester_user_id, *recipients},
                task,
                NotificationKind.DUE_REMINDER,
            )
            reminded += 1
        except Exception as e:
            log.error(
                "due_reminder_failed",
                task_id=task.task_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    await log.ainfo("due_reminders_completed", day=day.isoformat(), reminded=reminded)
    return reminded


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """距离下一次 hour:00 的秒数（now 需带时区）"""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ReminderScheduler:
    """每日定时执行到期提醒的后台任务"""

    def __init__(
        self,
        job: Callable[[date], Awaitable[int]],
        hour: int,
        tz_name: str,
    ) -> None:
        self._job = job
        self._hour = hour
        self._tz_name = tz_name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        log.info("reminder_scheduler_started", hour=self._hour, timezone=self._tz_name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("reminder_scheduler_stopped")

    async def run_once(self) -> int:
        return await self._job(today_in(self._tz_name))

    async def run_for(self, day: date) -> int:
        return await self._job(day)

    async def _loop(self) -> None:
        tz = ZoneInfo(self._tz_name)
        while True:
            delay = seconds_until_next_run(datetime.now(tz), self._hour)
            await asyncio.sleep(delay)
            try:
                await self.run_once()
            except Exception as e:
                log.error("reminder_job_failed", error_type=type(e).__name__, error=str(e))
