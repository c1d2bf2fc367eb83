"""全局 pytest 配置 -- 临时 SQLite 数据库 + 服务装配 fixture"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from taskcard.chat import InMemoryChatAdapter
from taskcard.core.models import Task, TaskStatus, TaskType
from taskcard.core.store import StoreGroup, create_store_group
from ulid import ULID

TEAM = "T0001"


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from taskcard.core.store.sqlite_init import init_db

    tmp_db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供共享连接的 Store 实例组"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.close()


@pytest.fixture
def chat() -> InMemoryChatAdapter:
    """内存聊天平台"""
    return InMemoryChatAdapter()


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """构造 Task 的工厂：默认个人任务，broadcast=True 时为群发任务"""

    def _make(broadcast: bool = False, **overrides) -> Task:
        now = datetime.now(UTC)
        fields: dict = {
            "task_id": str(ULID()),
            "team_id": TEAM,
            "channel_id": "C100",
            "message_ts": "1700000000.000100",
            "thread_ts": "1700000000.000100",
            "title": "Prepare the weekly report",
            "description": "Prepare the weekly report please",
            "requester_user_id": "UREQ",
            "created_by_user_id": "UREQ",
            "status": TaskStatus.OPEN,
            "created_at": now,
            "updated_at": now,
        }
        if broadcast:
            fields.update(
                task_type=TaskType.BROADCAST,
                assignee_label="<!subteam^S1|@sales>",
                total_count=3,
                completed_count=0,
            )
        else:
            fields.update(task_type=TaskType.PERSONAL, assignee_id="UASG")
        fields.update(overrides)
        return Task(**fields)

    return _make
