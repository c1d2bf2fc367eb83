"""core 测试配置 -- 核心层 fixture"""

import pytest_asyncio
from taskcard.core.store.task_store import SqliteTaskStore
from taskcard.core.store.thread_card_store import SqliteThreadCardStore


@pytest_asyncio.fixture
async def task_store(db_conn) -> SqliteTaskStore:
    """基于临时数据库的 TaskStore"""
    return SqliteTaskStore(db_conn)


@pytest_asyncio.fixture
async def card_store(db_conn) -> SqliteThreadCardStore:
    """基于临时数据库的 ThreadCardStore"""
    return SqliteThreadCardStore(db_conn)
