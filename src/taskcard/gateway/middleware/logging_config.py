"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出（附带 service 字段，异常栈序列化为字符串）
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时降级为纯本地日志。
"""

import logging
import os

import structlog

SERVICE_NAME = "taskcard"

# 第三方库日志过于冗长，统一压到 WARNING
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _add_service_name(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging() -> None:
    """初始化 structlog 配置

    根据 TASKCARD_LOG_FORMAT 环境变量选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出
    日志级别由 TASKCARD_LOG_LEVEL 控制（默认 INFO）。
    """
    log_format = os.environ.get("TASKCARD_LOG_FORMAT", "dev")
    log_level = os.environ.get("TASKCARD_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        shared_processors += [_add_service_name, structlog.processors.format_exc_info]
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app=None) -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE 环境变量控制：
    - "true": 启用 Logfire APM（需要 LOGFIRE_TOKEN）
    - "false" (默认): 降级为纯本地日志
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return
    try:
        import logfire

        logfire.configure(service_name=SERVICE_NAME)
        if app is not None:
            logfire.instrument_fastapi(app)
        logfire.instrument_httpx()
    except Exception:
        # Logfire 初始化失败时降级为本地日志
        structlog.get_logger().warning(
            "logfire_init_failed",
            message="Logfire 初始化失败，降级为纯本地日志",
        )
