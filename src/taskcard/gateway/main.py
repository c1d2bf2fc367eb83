"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 聊天客户端与服务装配 +
到期提醒调度器启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse
from taskcard.chat import create_chat_client, load_chat_config
from taskcard.core.config import (
    get_db_path,
    get_reminder_hour,
    get_timezone_name,
    reminders_enabled,
    run_reminders_now,
)
from taskcard.core.errors import TaskCardError, UpstreamUnavailableError
from taskcard.core.store import create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import commands, health, home, jobs, tasks
from .services.directory import ChatDirectory
from .services.lifecycle import TaskLifecycleController
from .services.presentation import ChatPresentationAdapter
from .services.reminders import ReminderScheduler, run_due_reminders
from .services.thread_cards import ThreadCardService

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与服务，关闭时清理"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    chat_config = load_chat_config()
    chat_client = create_chat_client(chat_config)
    app.state.chat_config = chat_config
    app.state.chat_client = chat_client
    log.info("chat_client_initialized", mode=chat_config.chat_mode)

    directory = ChatDirectory(chat_client, chat_config)
    presentation = ChatPresentationAdapter(chat_client, store_group.task_store, directory)
    thread_cards = ThreadCardService(store_group.card_store, chat_client, presentation)
    app.state.presentation = presentation
    app.state.controller = TaskLifecycleController(
        store_group,
        directory,
        presentation,
        thread_cards,
    )

    scheduler = ReminderScheduler(
        job=partial(run_due_reminders, store_group.task_store, presentation),
        hour=get_reminder_hour(),
        tz_name=get_timezone_name(),
    )
    app.state.reminder_scheduler = scheduler
    if reminders_enabled():
        scheduler.start()
    if run_reminders_now():
        await scheduler.run_once()

    yield

    await scheduler.stop()
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.close()


async def handle_taskcard_error(request: Request, exc: TaskCardError) -> JSONResponse:
    """业务异常 -> {"error": {"code", "message"}}"""
    content: dict = {"error": {"code": exc.code, "message": exc.message}}
    if isinstance(exc, UpstreamUnavailableError):
        content["error"]["recoverable"] = exc.recoverable
        if exc.user_hint:
            content["error"]["hint"] = exc.user_hint
    log.info("request_rejected", code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="TaskCard Gateway",
        version="0.1.0",
        description="聊天消息任务化 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_exception_handler(TaskCardError, handle_taskcard_error)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(commands.router, tags=["commands"])
    app.include_router(home.router, tags=["home"])
    app.include_router(jobs.router, tags=["jobs"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
