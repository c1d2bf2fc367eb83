"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path):
    """集成测试用 FastAPI app（通过 lifespan 完整装配，memory 聊天模式）"""
    os.environ["TASKCARD_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["TASKCARD_CHAT_MODE"] = "memory"
    os.environ["TASKCARD_REMINDERS_ENABLED"] = "false"
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskcard.gateway.main import create_app

    app = create_app()
    async with app.router.lifespan_context(app):
        # memory 模式下预置用户组
        chat = app.state.chat_client
        chat.add_usergroup("S1", "sales-all", ["UA", "UB", "UC"])
        chat.add_usergroup("S2", "ops-all", ["UREQ"])
        yield app

    for key in [
        "TASKCARD_DB_PATH",
        "TASKCARD_CHAT_MODE",
        "TASKCARD_REMINDERS_ENABLED",
        "LOGFIRE_SEND_TO_LOGFIRE",
    ]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
