"""到期提醒测试

测试内容：
1. 当天到期的个人任务提醒依赖者与负责人
2. 群发任务只提醒尚未完成的目标
3. 每个任务只提醒一次
4. 单个任务失败不中断整批
5. 调度时间计算与调度器启停
"""

import asyncio
from datetime import UTC, date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

from taskcard.chat import InMemoryChatAdapter
from taskcard.core.models import TaskStatus
from taskcard.gateway.services.reminders import (
    ReminderScheduler,
    run_due_reminders,
    seconds_until_next_run,
)

DAY = date(2026, 5, 1)


class TestRunDueReminders:
    async def test_personal_task(
        self, store_group, presentation, chat: InMemoryChatAdapter, make_task
    ):
        task = make_task(due_date=DAY)
        await store_group.task_store.create_task(task)

        reminded = await run_due_reminders(store_group.task_store, presentation, DAY)

        assert reminded == 1
        assert "Task due today" in chat.dm_texts("UREQ")[-1]
        assert "Task due today" in chat.dm_texts("UASG")[-1]

    async def test_broadcast_skips_finished_targets(
        self, store_group, presentation, chat: InMemoryChatAdapter, make_task
    ):
        tasks = store_group.task_store
        task = make_task(broadcast=True, due_date=DAY)
        await tasks.create_task(task)
        await tasks.insert_targets(task.team_id, task.task_id, ["UA", "UB", "UC"])
        await tasks.record_completion(task.team_id, task.task_id, "UA")

        await run_due_reminders(tasks, presentation, DAY)

        assert chat.dm_texts("UA") == []
        assert len(chat.dm_texts("UB")) == 1
        assert len(chat.dm_texts("UC")) == 1

    async def test_reminds_once(self, store_group, presentation, make_task):
        await store_group.task_store.create_task(make_task(due_date=DAY))

        assert await run_due_reminders(store_group.task_store, presentation, DAY) == 1
        assert await run_due_reminders(store_group.task_store, presentation, DAY) == 0

    async def test_skips_terminal_and_other_days(
        self, store_group, presentation, chat: InMemoryChatAdapter, make_task
    ):
        tasks = store_group.task_store
        await tasks.create_task(make_task(due_date=DAY, status=TaskStatus.DONE))
        await tasks.create_task(make_task(due_date=DAY + timedelta(days=1)))

        assert await run_due_reminders(tasks, presentation, DAY) == 0
        assert chat.posted == []

    async def test_failure_isolated(self, store_group, make_task):
        tasks = store_group.task_store
        await tasks.create_task(make_task(due_date=DAY))
        await tasks.create_task(make_task(due_date=DAY))

        presentation = AsyncMock()
        presentation.notify_users.side_effect = [RuntimeError("boom"), 1]

        assert await run_due_reminders(tasks, presentation, DAY) == 1
        assert presentation.notify_users.await_count == 2


class TestScheduling:
    def test_later_today(self):
        now = datetime(2026, 5, 1, 8, 30, tzinfo=UTC)
        assert seconds_until_next_run(now, 9) == 30 * 60

    def test_already_passed(self):
        tz = timezone(timedelta(hours=9))
        now = datetime(2026, 5, 1, 9, 0, tzinfo=tz)
        assert seconds_until_next_run(now, 9) == 24 * 3600

    async def test_run_for_and_run_once(self):
        job = AsyncMock(return_value=2)
        scheduler = ReminderScheduler(job, hour=9, tz_name="Asia/Tokyo")

        assert await scheduler.run_for(DAY) == 2
        job.assert_awaited_with(DAY)
        assert await scheduler.run_once() == 2

    async def test_start_stop(self):
        scheduler = ReminderScheduler(AsyncMock(return_value=0), hour=9, tz_name="Asia/Tokyo")

        scheduler.start()
        await asyncio.sleep(0)
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running
