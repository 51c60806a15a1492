"""Loguru setup: readable console in dev, JSON lines in production.

Rollback decisions and executions are bound with ``audit=True`` and, when
``AUDIT_LOG_PATH`` is set, additionally written to an append-only JSON
lines file that release pipelines can archive.
"""
import sys
import json
import logging
from contextvars import ContextVar
from loguru import logger as loguru_logger
from opentelemetry import trace

from src.release_guard.core.config import settings

# Request correlation id, set by the middleware
trace_id: ContextVar[str] = ContextVar("trace_id", default="")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[deployment_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx", "pybreaker")


def current_trace_id() -> str:
    """Active span trace id, else the request correlation id."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format(span_context.trace_id, "032x")
    return trace_id.get() or "no-trace"


class InterceptHandler(logging.Handler):
    """Route stdlib logging records into loguru."""

    def emit(self, record):
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _to_json(record) -> str:
    extra = dict(record["extra"])
    entry = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "service": settings.PROJECT_NAME,
        "environment": settings.ENV,
        "trace_id": current_trace_id(),
        "deployment_id": extra.pop("deployment_id", None) or None,
        "logger": f'{record["name"]}:{record["function"]}:{record["line"]}',
    }
    if record["exception"]:
        exc = record["exception"]
        entry["error"] = {
            "type": exc.type.__name__ if exc.type else "Unknown",
            "message": str(exc.value) if exc.value else "",
        }
    entry.update(extra)
    return json.dumps(entry, default=str)


def json_formatter(record) -> str:
    """Single JSON line; braces escaped since loguru formats the result."""
    return _to_json(record).replace("{", "{{").replace("}", "}}") + "\n"


def _is_audit(record) -> bool:
    return bool(record["extra"].get("audit"))


def setup_logging():
    """Install sinks for the configured environment."""
    level = "DEBUG" if settings.DEBUG else "INFO"

    loguru_logger.remove()
    loguru_logger.configure(extra={"deployment_id": ""})

    if settings.ENV == "production":
        loguru_logger.add(sys.stderr, format=json_formatter, level=level)
    else:
        loguru_logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if settings.AUDIT_LOG_PATH:
        loguru_logger.add(
            settings.AUDIT_LOG_PATH,
            format=json_formatter,
            level="INFO",
            filter=_is_audit,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


logger = loguru_logger
