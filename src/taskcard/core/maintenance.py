"""群发计数重建

completed_count 是缓存值；以 task_completions 行为准逐个重算，
用于修复手工改库或历史版本遗留的计数漂移。
"""

import time

import structlog

from .store.task_store import SqliteTaskStore

log = structlog.get_logger()


async def recount_broadcast_progress(task_store: SqliteTaskStore) -> int:
    """重算所有群发任务的 completed_count

    Returns:
        计数发生变化的任务数
    """
    start_time = time.monotonic()
    tasks = await task_store.list_broadcast_tasks()

    await log.ainfo("broadcast_recount_started", task_count=len(tasks))

    drifted = 0
    for task in tasks:
        count = await task_store.refresh_completed_count(task.team_id, task.task_id)
        if count != task.completed_count:
            drifted += 1
            await log.awarning(
                "broadcast_count_drift_fixed",
                task_id=task.task_id,
                cached=task.completed_count,
                actual=count,
            )

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "broadcast_recount_completed",
        task_count=len(tasks),
        drifted=drifted,
        elapsed_ms=elapsed_ms,
    )
    return drifted
