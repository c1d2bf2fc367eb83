"""TaskCard Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .sqlite_init import init_db, verify_wal_mode
from .task_store import SqliteTaskStore, check_task_shape
from .thread_card_store import SqliteThreadCardStore
from .transaction import create_task_with_targets


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接和写锁"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn, self.write_lock)
        self.card_store = SqliteThreadCardStore(conn, self.write_lock)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """打开数据库、建表并返回共享该连接的 StoreGroup

    内存库（":memory:"）不创建目录。
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteThreadCardStore",
    "check_task_shape",
    "init_db",
    "verify_wal_mode",
    "create_task_with_targets",
]
