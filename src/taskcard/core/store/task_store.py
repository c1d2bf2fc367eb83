"""TaskStore SQLite 实现

tasks / task_targets / task_completions 三张表的唯一写入者。
所有操作按 team_id 隔离；行不存在时抛出 NotFoundError。
此层只负责行级读写与不变量校验，不触发通知或渲染。

连接由多个协程共享，所有提交都在 write_lock 内完成；
多语句事务（见 transaction.py）持锁期间其他写入不会交错或被一并提交。
"""

import asyncio
from collections.abc import Collection, Iterable
from datetime import UTC, date, datetime

import aiosqlite

from ..errors import ConflictError, InvalidTaskError, NotFoundError
from ..models.enums import TERMINAL_STATES, TaskStatus, TaskType
from ..models.task import ContentPatch, Task

_TASK_COLUMNS = (
    "task_id",
    "team_id",
    "channel_id",
    "message_ts",
    "thread_ts",
    "source_permalink",
    "title",
    "description",
    "requester_user_id",
    "created_by_user_id",
    "task_type",
    "assignee_id",
    "assignee_label",
    "status",
    "due_date",
    "total_count",
    "completed_count",
    "notified_at",
    "reminded_at",
    "requester_dept",
    "assignee_dept",
    "created_at",
    "updated_at",
    "completed_at",
    "cancelled_at",
    "cancelled_by_user_id",
)

_SELECT_TASKS = f"SELECT {', '.join(_TASK_COLUMNS)} FROM tasks"

# 看板排序：有截止日期的在前，按日期升序，再按创建时间倒序
_DASHBOARD_ORDER = "ORDER BY (due_date IS NULL) ASC, due_date ASC, created_at DESC"

# 部门筛选的特殊值
DEPT_ALL = "all"
DEPT_NONE = "__none__"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def check_task_shape(task: Task) -> None:
    """校验 task_type 相关字段的一致性

    Raises:
        InvalidTaskError: 个人任务缺少 assignee_id，或群发任务缺少计数等
    """
    if task.task_type == TaskType.PERSONAL:
        if not task.assignee_id:
            raise InvalidTaskError("personal task requires assignee_id")
        if task.total_count is not None or task.completed_count is not None:
            raise InvalidTaskError("personal task must not carry broadcast counters")
    else:
        if task.assignee_id is not None:
            raise InvalidTaskError("broadcast task must not carry assignee_id")
        if task.total_count is None or task.completed_count is None:
            raise InvalidTaskError("broadcast task requires total_count and completed_count")
        if not task.assignee_label:
            raise InvalidTaskError("broadcast task requires assignee_label")
        if task.completed_count > task.total_count:
            raise InvalidTaskError("completed_count exceeds total_count")


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        write_lock: asyncio.Lock | None = None,
    ) -> None:
        self._conn = conn
        self.write_lock = write_lock or asyncio.Lock()

    async def _execute_write(self, sql: str, params) -> aiosqlite.Cursor:
        """执行单条写语句并提交"""
        async with self.write_lock:
            cursor = await self._conn.execute(sql, params)
            await self._conn.commit()
        return cursor

    # ---- tasks ----

    async def create_task(self, task: Task, commit: bool = True) -> Task:
        """创建任务记录

        commit=False 时调用方须已持有 write_lock 并负责提交。
        """
        check_task_shape(task)
        row = self._task_to_row(task)
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        sql = f"INSERT INTO tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})"
        params = tuple(row[c] for c in _TASK_COLUMNS)
        if commit:
            await self._execute_write(sql, params)
        else:
            await self._conn.execute(sql, params)
        return task

    async def find_task(self, team_id: str, task_id: str) -> Task | None:
        """根据 team_id + task_id 查询任务，不存在返回 None"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASKS} WHERE team_id = ? AND task_id = ?",
            (team_id, task_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def get_task(self, team_id: str, task_id: str) -> Task:
        """根据 team_id + task_id 查询任务

        Raises:
            NotFoundError: 当前 team 下不存在该任务
        """
        task = await self.find_task(team_id, task_id)
        if task is None:
            raise NotFoundError(team_id, task_id)
        return task

    async def update_status(
        self,
        team_id: str,
        task_id: str,
        status: TaskStatus,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """更新任务状态；进入 done 时记录 completed_at

        不校验流转合法性（由生命周期控制器负责）。传入 expected_statuses 时
        作为条件更新执行，并发请求已将任务移出这些状态则抛出 ConflictError。
        """
        now = _now_iso()
        sql = """
            UPDATE tasks
            SET status = ?,
                completed_at = CASE WHEN ? = 'done' AND status <> 'done' THEN ? ELSE completed_at END,
                updated_at = ?
            WHERE team_id = ? AND task_id = ?
        """
        params: list = [status.value, status.value, now, now, team_id, task_id]
        sql, params = self._with_status_guard(sql, params, expected_statuses)
        cursor = await self._execute_write(sql, params)
        if cursor.rowcount == 0:
            await self._raise_missing_or_conflict(team_id, task_id)
        return await self.get_task(team_id, task_id)

    async def update_content(
        self,
        team_id: str,
        task_id: str,
        patch: ContentPatch,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """部分更新任务内容

        title / description / assignee_id 为 None 时保留原值；
        due_date 仅在 patch 显式提供时写入（包括写入 NULL 清空）。
        """
        now = _now_iso()
        assignments = [
            "title = COALESCE(?, title)",
            "description = COALESCE(?, description)",
        ]
        params: list = [patch.title, patch.description]
        if patch.assignee_id is not None:
            # 更换负责人时部门随之替换，不沿用旧负责人的部门
            assignments.append("assignee_id = ?")
            assignments.append("assignee_dept = ?")
            params.extend([patch.assignee_id, patch.assignee_dept])
        if patch.due_date_provided:
            assignments.append("due_date = ?")
            params.append(patch.due_date.isoformat() if patch.due_date else None)
        assignments.append("updated_at = ?")
        params.append(now)

        sql = f"UPDATE tasks SET {', '.join(assignments)} WHERE team_id = ? AND task_id = ?"
        params.extend([team_id, task_id])
        sql, params = self._with_status_guard(sql, params, expected_statuses)
        cursor = await self._execute_write(sql, params)
        if cursor.rowcount == 0:
            await self._raise_missing_or_conflict(team_id, task_id)
        return await self.get_task(team_id, task_id)

    async def cancel_task(
        self,
        team_id: str,
        task_id: str,
        actor_user_id: str,
        expected_statuses: Collection[TaskStatus] | None = None,
    ) -> Task:
        """取消任务：status=cancelled，记录 cancelled_at / cancelled_by_user_id"""
        now = _now_iso()
        sql = """
            UPDATE tasks
            SET status = 'cancelled',
                cancelled_at = ?,
                cancelled_by_user_id = ?,
                updated_at = ?
            WHERE team_id = ? AND task_id = ?
        """
        params: list = [now, actor_user_id, now, team_id, task_id]
        sql, params = self._with_status_guard(sql, params, expected_statuses)
        cursor = await self._execute_write(sql, params)
        if cursor.rowcount == 0:
            await self._raise_missing_or_conflict(team_id, task_id)
        return await self.get_task(team_id, task_id)

    async def mark_notified(self, team_id: str, task_id: str) -> bool:
        """全员完成通知的单次触发标记

        条件更新 notified_at IS NULL；并发请求中只有一个返回 True。
        """
        now = _now_iso()
        cursor = await self._execute_write(
            """
            UPDATE tasks
            SET notified_at = ?, updated_at = ?
            WHERE team_id = ? AND task_id = ? AND notified_at IS NULL
            """,
            (now, now, team_id, task_id),
        )
        return cursor.rowcount == 1

    async def mark_reminded(self, team_id: str, task_id: str) -> bool:
        """到期提醒的单次触发标记"""
        now = _now_iso()
        cursor = await self._execute_write(
            """
            UPDATE tasks
            SET reminded_at = ?
            WHERE team_id = ? AND task_id = ? AND reminded_at IS NULL
            """,
            (now, team_id, task_id),
        )
        return cursor.rowcount == 1

    # ---- targets / completions ----

    async def insert_targets(
        self,
        team_id: str,
        task_id: str,
        user_ids: Iterable[str],
        commit: bool = True,
    ) -> None:
        """批量写入群发目标，重复 (task_id, user_id) 静默忽略

        commit=False 时调用方须已持有 write_lock 并负责提交。
        """
        await self._ensure_exists(team_id, task_id)
        now = _now_iso()
        sql = "INSERT OR IGNORE INTO task_targets (task_id, user_id, created_at) VALUES (?, ?, ?)"
        rows = [(task_id, user_id, now) for user_id in sorted(set(user_ids))]
        if not commit:
            await self._conn.executemany(sql, rows)
            return
        async with self.write_lock:
            await self._conn.executemany(sql, rows)
            await self._conn.commit()

    async def record_completion(self, team_id: str, task_id: str, user_id: str) -> bool:
        """记录某个目标的个人完成

        仅在任务仍处于非终态时写入，状态判断与插入在同一条语句内完成；
        重复记录静默忽略。

        Returns:
            True 如果本次新写入了一行；重复完成或任务已终结时为 False
        """
        await self._ensure_exists(team_id, task_id)
        terminal = [s.value for s in TERMINAL_STATES]
        placeholders = ", ".join("?" for _ in terminal)
        cursor = await self._execute_write(
            f"""
            INSERT OR IGNORE INTO task_completions (task_id, user_id, completed_at)
            SELECT ?, ?, ?
            WHERE EXISTS (
                SELECT 1 FROM tasks
                WHERE team_id = ? AND task_id = ?
                  AND status NOT IN ({placeholders})
            )
            """,
            (task_id, user_id, _now_iso(), team_id, task_id, *terminal),
        )
        return cursor.rowcount == 1

    async def count_targets(self, team_id: str, task_id: str) -> int:
        await self._ensure_exists(team_id, task_id)
        return await self._scalar(
            "SELECT COUNT(*) FROM task_targets WHERE task_id = ?",
            (task_id,),
        )

    async def count_completions(self, team_id: str, task_id: str) -> int:
        await self._ensure_exists(team_id, task_id)
        return await self._scalar(
            "SELECT COUNT(*) FROM task_completions WHERE task_id = ?",
            (task_id,),
        )

    async def is_target(self, team_id: str, task_id: str, user_id: str) -> bool:
        await self._ensure_exists(team_id, task_id)
        count = await self._scalar(
            "SELECT COUNT(*) FROM task_targets WHERE task_id = ? AND user_id = ?",
            (task_id, user_id),
        )
        return count > 0

    async def has_completed(self, team_id: str, task_id: str, user_id: str) -> bool:
        await self._ensure_exists(team_id, task_id)
        count = await self._scalar(
            "SELECT COUNT(*) FROM task_completions WHERE task_id = ? AND user_id = ?",
            (task_id, user_id),
        )
        return count > 0

    async def list_target_ids(self, team_id: str, task_id: str) -> list[str]:
        """群发目标用户列表（按 user_id 排序）"""
        await self._ensure_exists(team_id, task_id)
        cursor = await self._conn.execute(
            "SELECT user_id FROM task_targets WHERE task_id = ? ORDER BY user_id",
            (task_id,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def list_completion_ids(self, team_id: str, task_id: str) -> list[str]:
        """已完成的目标用户列表（按 user_id 排序）"""
        await self._ensure_exists(team_id, task_id)
        cursor = await self._conn.execute(
            "SELECT user_id FROM task_completions WHERE task_id = ? ORDER BY user_id",
            (task_id,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def refresh_completed_count(self, team_id: str, task_id: str) -> int:
        """按 task_completions 重新计数并写回 completed_count 缓存"""
        cursor = await self._execute_write(
            """
            UPDATE tasks
            SET completed_count = (
                    SELECT COUNT(*) FROM task_completions WHERE task_id = ?
                ),
                updated_at = ?
            WHERE team_id = ? AND task_id = ? AND task_type = 'broadcast'
            """,
            (task_id, _now_iso(), team_id, task_id),
        )
        if cursor.rowcount == 0:
            await self._ensure_exists(team_id, task_id)
        return await self._scalar(
            "SELECT COUNT(*) FROM task_completions WHERE task_id = ?",
            (task_id,),
        )

    # ---- 看板 / 批处理查询 ----

    async def list_tasks_for_assignee(
        self,
        team_id: str,
        user_id: str,
        status: TaskStatus,
        dept_key: str | None = None,
        limit: int = 10,
    ) -> list[Task]:
        """查询某人负责的个人任务，支持按负责人部门筛选"""
        sql = f"{_SELECT_TASKS} WHERE team_id = ? AND assignee_id = ? AND status = ?"
        params: list = [team_id, user_id, status.value]
        sql, params = self._with_dept_filter(sql, params, "assignee_dept", dept_key)
        return await self._fetch_tasks(f"{sql} {_DASHBOARD_ORDER} LIMIT ?", [*params, limit])

    async def list_tasks_for_requester(
        self,
        team_id: str,
        user_id: str,
        status: TaskStatus,
        dept_key: str | None = None,
        limit: int = 10,
    ) -> list[Task]:
        """查询某人发起的任务，支持按依赖者部门筛选"""
        sql = f"{_SELECT_TASKS} WHERE team_id = ? AND requester_user_id = ? AND status = ?"
        params: list = [team_id, user_id, status.value]
        sql, params = self._with_dept_filter(sql, params, "requester_dept", dept_key)
        return await self._fetch_tasks(f"{sql} {_DASHBOARD_ORDER} LIMIT ?", [*params, limit])

    async def list_tasks_for_target(
        self,
        team_id: str,
        user_id: str,
        status: TaskStatus,
        limit: int = 10,
    ) -> list[Task]:
        """查询某人作为目标的群发任务"""
        sql = (
            f"{_SELECT_TASKS} WHERE team_id = ? AND status = ? AND task_id IN "
            "(SELECT task_id FROM task_targets WHERE user_id = ?)"
        )
        return await self._fetch_tasks(
            f"{sql} {_DASHBOARD_ORDER} LIMIT ?",
            [team_id, status.value, user_id, limit],
        )

    async def list_due_for_reminder(self, day: date, limit: int = 500) -> list[Task]:
        """查询当天到期、未终结且尚未提醒的任务（跨 team）"""
        terminal = [s.value for s in TERMINAL_STATES]
        placeholders = ", ".join("?" for _ in terminal)
        return await self._fetch_tasks(
            f"""
            {_SELECT_TASKS}
            WHERE due_date = ?
              AND status NOT IN ({placeholders})
              AND reminded_at IS NULL
            ORDER BY created_at ASC
            LIMIT ?
            """,
            [day.isoformat(), *terminal, limit],
        )

    async def list_broadcast_tasks(self) -> list[Task]:
        """查询全部群发任务（计数重建用）"""
        return await self._fetch_tasks(
            f"{_SELECT_TASKS} WHERE task_type = 'broadcast' ORDER BY created_at ASC",
            [],
        )

    # ---- 内部工具 ----

    async def _fetch_tasks(self, sql: str, params: list) -> list[Task]:
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def _scalar(self, sql: str, params: tuple) -> int:
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _ensure_exists(self, team_id: str, task_id: str) -> None:
        count = await self._scalar(
            "SELECT COUNT(*) FROM tasks WHERE team_id = ? AND task_id = ?",
            (team_id, task_id),
        )
        if count == 0:
            raise NotFoundError(team_id, task_id)

    async def _raise_missing_or_conflict(self, team_id: str, task_id: str) -> None:
        """条件更新未命中：区分任务不存在与并发状态冲突"""
        current = await self.get_task(team_id, task_id)
        raise ConflictError(
            f"Task {task_id} was moved to {current.status.value} by a concurrent request"
        )

    @staticmethod
    def _with_status_guard(
        sql: str,
        params: list,
        expected_statuses: Collection[TaskStatus] | None,
    ) -> tuple[str, list]:
        if expected_statuses is None:
            return sql, params
        values = [TaskStatus(s).value for s in expected_statuses]
        if not values:
            return f"{sql} AND 0", params
        placeholders = ", ".join("?" for _ in values)
        return f"{sql} AND status IN ({placeholders})", [*params, *values]

    @staticmethod
    def _with_dept_filter(
        sql: str,
        params: list,
        column: str,
        dept_key: str | None,
    ) -> tuple[str, list]:
        if not dept_key or dept_key == DEPT_ALL:
            return sql, params
        if dept_key == DEPT_NONE:
            return f"{sql} AND {column} IS NULL", params
        return f"{sql} AND {column} = ?", [*params, dept_key]

    @staticmethod
    def _task_to_row(task: Task) -> dict:
        """将 Task 模型转换为数据库列值"""
        return {
            "task_id": task.task_id,
            "team_id": task.team_id,
            "channel_id": task.channel_id,
            "message_ts": task.message_ts,
            "thread_ts": task.thread_ts,
            "source_permalink": task.source_permalink,
            "title": task.title,
            "description": task.description,
            "requester_user_id": task.requester_user_id,
            "created_by_user_id": task.created_by_user_id,
            "task_type": task.task_type.value,
            "assignee_id": task.assignee_id,
            "assignee_label": task.assignee_label,
            "status": task.status.value,
            "due_date": task.due_date.isoformat() if task.due_date else None,
            "total_count": task.total_count,
            "completed_count": task.completed_count,
            "notified_at": task.notified_at.isoformat() if task.notified_at else None,
            "reminded_at": task.reminded_at.isoformat() if task.reminded_at else None,
            "requester_dept": task.requester_dept,
            "assignee_dept": task.assignee_dept,
            "created_at": task.created_at.isoformat(),
            "updated_at": task.updated_at.isoformat(),
            "completed_at": task.completed_at.isoformat() if task.completed_at else None,
            "cancelled_at": task.cancelled_at.isoformat() if task.cancelled_at else None,
            "cancelled_by_user_id": task.cancelled_by_user_id,
        }

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        data = dict(zip(_TASK_COLUMNS, tuple(row), strict=True))
        return Task(
            task_id=data["task_id"],
            team_id=data["team_id"],
            channel_id=data["channel_id"],
            message_ts=data["message_ts"],
            thread_ts=data["thread_ts"],
            source_permalink=data["source_permalink"],
            title=data["title"],
            description=data["description"],
            requester_user_id=data["requester_user_id"],
            created_by_user_id=data["created_by_user_id"],
            task_type=TaskType(data["task_type"]),
            assignee_id=data["assignee_id"],
            assignee_label=data["assignee_label"],
            status=TaskStatus(data["status"]),
            due_date=date.fromisoformat(data["due_date"]) if data["due_date"] else None,
            total_count=data["total_count"],
            completed_count=data["completed_count"],
            notified_at=_dt(data["notified_at"]),
            reminded_at=_dt(data["reminded_at"]),
            requester_dept=data["requester_dept"],
            assignee_dept=data["assignee_dept"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            completed_at=_dt(data["completed_at"]),
            cancelled_at=_dt(data["cancelled_at"]),
            cancelled_by_user_id=data["cancelled_by_user_id"],
        )
