"""任务 + 群发目标原子创建测试"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from taskcard.core.models import TaskStatus
from taskcard.core.store import create_task_with_targets
from taskcard.core.store.task_store import SqliteTaskStore


class TestCreateTaskWithTargets:
    async def test_commits_task_and_targets(self, db_conn, task_store: SqliteTaskStore, make_task):
        task = make_task(broadcast=True)
        await create_task_with_targets(db_conn, task_store, task, ["UA", "UB", "UC"])

        loaded = await task_store.get_task(task.team_id, task.task_id)
        assert loaded.total_count == 3
        assert await task_store.list_target_ids(task.team_id, task.task_id) == ["UA", "UB", "UC"]

    async def test_personal_task_without_targets(
        self, db_conn, task_store: SqliteTaskStore, make_task
    ):
        task = make_task()
        await create_task_with_targets(db_conn, task_store, task)

        assert await task_store.find_task(task.team_id, task.task_id) is not None
        assert await task_store.count_targets(task.team_id, task.task_id) == 0

    async def test_rollback_on_target_failure(
        self, db_conn, task_store: SqliteTaskStore, make_task
    ):
        """目标写入失败时任务行一并回滚"""
        task = make_task(broadcast=True)
        with patch.object(
            task_store,
            "insert_targets",
            new=AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            with pytest.raises(RuntimeError, match="disk full"):
                await create_task_with_targets(db_conn, task_store, task, ["UA"])

        assert await task_store.find_task(task.team_id, task.task_id) is None

    async def test_concurrent_write_waits_for_transaction(
        self, db_conn, task_store: SqliteTaskStore, make_task
    ):
        """事务进行中其他协程的写入排队等待：不会提前提交半写入的任务，也不会被回滚波及"""
        other = make_task()
        await task_store.create_task(other)
        task = make_task(broadcast=True)

        started = asyncio.Event()
        release = asyncio.Event()

        async def _stalled_insert(*args, **kwargs):
            started.set()
            await release.wait()
            raise RuntimeError("disk full")

        with patch.object(task_store, "insert_targets", new=_stalled_insert):
            creating = asyncio.create_task(
                create_task_with_targets(db_conn, task_store, task, ["UA"])
            )
            await started.wait()
            writer = asyncio.create_task(
                task_store.update_status(other.team_id, other.task_id, TaskStatus.IN_PROGRESS)
            )
            for _ in range(5):
                await asyncio.sleep(0)
            assert not writer.done()

            release.set()
            with pytest.raises(RuntimeError, match="disk full"):
                await creating
            await writer

        assert await task_store.find_task(task.team_id, task.task_id) is None
        reloaded = await task_store.get_task(other.team_id, other.task_id)
        assert reloaded.status == TaskStatus.IN_PROGRESS
