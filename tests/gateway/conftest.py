"""gateway 测试配置 -- 服务装配 + FastAPI app fixture"""

import os
from collections.abc import AsyncGenerator
from functools import partial
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskcard.chat import InMemoryChatAdapter
from taskcard.core.store import StoreGroup, create_store_group
from taskcard.gateway.services.directory import ChatDirectory
from taskcard.gateway.services.lifecycle import TaskLifecycleController
from taskcard.gateway.services.presentation import ChatPresentationAdapter
from taskcard.gateway.services.reminders import ReminderScheduler, run_due_reminders
from taskcard.gateway.services.thread_cards import ThreadCardService

_ENV_KEYS = [
    "TASKCARD_DB_PATH",
    "TASKCARD_CHAT_MODE",
    "TASKCARD_REMINDERS_ENABLED",
    "LOGFIRE_SEND_TO_LOGFIRE",
]


@pytest_asyncio.fixture
async def directory(chat: InMemoryChatAdapter) -> ChatDirectory:
    """两个部门用户组：sales（群发目标）与 ops（依赖者）"""
    chat.add_usergroup("S1", "sales-all", ["UA", "UB", "UC"])
    chat.add_usergroup("S2", "ops-all", ["UREQ"])
    return ChatDirectory(chat)


@pytest_asyncio.fixture
async def presentation(chat, store_group: StoreGroup, directory) -> ChatPresentationAdapter:
    return ChatPresentationAdapter(chat, store_group.task_store, directory)


@pytest_asyncio.fixture
async def thread_cards(chat, store_group: StoreGroup, presentation) -> ThreadCardService:
    return ThreadCardService(store_group.card_store, chat, presentation)


@pytest_asyncio.fixture
async def controller(
    store_group: StoreGroup, directory, presentation, thread_cards
) -> TaskLifecycleController:
    return TaskLifecycleController(store_group, directory, presentation, thread_cards)


@pytest_asyncio.fixture
async def test_app(tmp_path: Path, chat: InMemoryChatAdapter):
    os.environ["TASKCARD_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["TASKCARD_CHAT_MODE"] = "memory"
    os.environ["TASKCARD_REMINDERS_ENABLED"] = "false"
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskcard.gateway.main import create_app

    app = create_app()

    # 手动初始化（绕过 lifespan）
    store_group = await create_store_group(str(tmp_path / "test.db"))
    chat.add_usergroup("S1", "sales-all", ["UA", "UB", "UC"])
    directory = ChatDirectory(chat)
    presentation = ChatPresentationAdapter(chat, store_group.task_store, directory)
    app.state.store_group = store_group
    app.state.chat_client = chat
    app.state.presentation = presentation
    app.state.controller = TaskLifecycleController(
        store_group,
        directory,
        presentation,
        ThreadCardService(store_group.card_store, chat, presentation),
    )
    app.state.reminder_scheduler = ReminderScheduler(
        job=partial(run_due_reminders, store_group.task_store, presentation),
        hour=9,
        tz_name="Asia/Tokyo",
    )

    yield app

    await store_group.close()
    for key in _ENV_KEYS:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
