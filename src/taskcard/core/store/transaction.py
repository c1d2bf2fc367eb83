"""任务 + 群发目标原子事务封装

任务行与目标快照在同一 SQLite 事务内提交，任一写入失败则整体回滚，
不会留下缺少目标的群发任务。整个写入序列持有 task_store.write_lock，
共享连接上的其他协程既不会提前提交半写入的任务，也不会被本事务的回滚波及。
"""

from collections.abc import Iterable

import aiosqlite

from ..models.task import Task
from .task_store import SqliteTaskStore


async def create_task_with_targets(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    task: Task,
    target_user_ids: Iterable[str] = (),
) -> Task:
    """在同一事务内原子提交任务创建和目标写入

    Args:
        conn: 数据库连接（需与 task_store 共享以保证事务性）
        task_store: TaskStore 实例
        task: 要创建的任务
        target_user_ids: 群发目标；个人任务传空

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    targets = list(target_user_ids)
    async with task_store.write_lock:
        try:
            await task_store.create_task(task, commit=False)
            if targets:
                await task_store.insert_targets(
                    task.team_id,
                    task.task_id,
                    targets,
                    commit=False,
                )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
    return task
