"""
Logging setup for the Campus Portal API.

Plain text for development, JSON lines for log collectors. A request id is
carried in a context variable so every line logged while serving a request
can be correlated.
"""
import json
import logging
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

LOGGER_NAME = "campus"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName", "request_id",
}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extra= fields are carried through."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_data[key] = value
        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs method, path, status and timing.

    Exceptions that reach this layer are logged while the request id is still
    set. With an `error_response` factory the client gets that response (with
    the request id header); without one the exception is re-raised.
    """

    def __init__(self, app, error_response: Optional[Callable[[], Response]] = None):
        super().__init__(app)
        self.error_response = error_response

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - started) * 1000
            get_logger("http").info(
                "%s %s - %s (%.2fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={"http_status": response.status_code, "duration_ms": round(duration_ms, 2)},
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            get_logger("http").error(
                "%s %s - Exception (%.2fms): %s",
                request.method,
                request.url.path,
                duration_ms,
                type(exc).__name__,
                exc_info=True,
                extra={"http_status": 500, "duration_ms": round(duration_ms, 2)},
            )
            if self.error_response is None:
                raise
            response = self.error_response()
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)
