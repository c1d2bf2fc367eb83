"""LoggingMiddleware -- 请求级日志

每个请求绑定 request_id（沿用上游 X-Request-ID，否则生成 ULID），
结束时记录状态码与耗时，并回写 X-Request-ID 响应头。
探针路径只记 debug，避免淹没业务日志。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"

_PROBE_PATHS = frozenset({"/health", "/ready"})


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )
        log = structlog.get_logger()

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        if path in _PROBE_PATHS:
            await log.adebug("probe_served", status_code=response.status_code)
        else:
            await log.ainfo(
                "request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
