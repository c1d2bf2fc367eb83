"""健康检查路由

GET /health: 存活探针，恒为 200。
GET /ready: 就绪探针。core 档检查 SQLite 与数据目录所在磁盘；
         chat 档追加聊天平台 auth.test 探测。
"""

import shutil
from pathlib import Path
from typing import Literal

import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse
from taskcard.core.config import get_db_path
from taskcard.core.store import StoreGroup, verify_wal_mode

log = structlog.get_logger()

router = APIRouter()

_MB = 1024 * 1024


async def _check_sqlite(store_group: StoreGroup) -> dict[str, str]:
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        wal = await verify_wal_mode(store_group.conn)
    except Exception as e:
        return {"sqlite": f"error: {e}"}
    return {"sqlite": "ok", "wal_mode": "ok" if wal else "off"}


def _free_disk_mb() -> int:
    # 内存库或目录尚未创建时退回当前目录
    db_dir = Path(get_db_path()).parent
    target = db_dir if db_dir.exists() else Path(".")
    return shutil.disk_usage(target).free // _MB


async def _check_chat(request: Request) -> bool:
    chat = getattr(request.app.state, "chat_client", None)
    if chat is None:
        return False
    try:
        return bool(await chat.health_check())
    except Exception as e:
        log.warning("chat_health_check_error", error=str(e))
        return False


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: Literal["core", "chat"] = Query(
        default="core",
        description="core 仅检查本地依赖；chat 追加聊天平台探测",
    ),
):
    """就绪检查，任一项失败返回 503"""
    checks: dict[str, str | int] = {}
    checks.update(await _check_sqlite(request.app.state.store_group))
    ok = checks["sqlite"] == "ok"

    try:
        checks["disk_space_mb"] = _free_disk_mb()
    except OSError:
        checks["disk_space_mb"] = 0
        ok = False

    if profile == "chat":
        reachable = await _check_chat(request)
        checks["chat_api"] = "ok" if reachable else "unreachable"
        ok = ok and reachable
    else:
        checks["chat_api"] = "skipped"

    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "status": "ready" if ok else "not_ready",
            "profile": profile,
            "checks": checks,
        },
    )
