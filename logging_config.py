"""Logging configuration.

Console logging with optional rotating files and JSON output. Request id, user id
and client IP are kept in contextvars and copied onto every record so API logs can
be correlated per request.
"""

import json
import logging
import logging.handlers
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
ip_ctx: ContextVar[Optional[str]] = ContextVar("ip_address", default=None)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """Emit one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for field in ("request_id", "user_id", "ip_address", "method", "endpoint", "status_code", "duration"):
            if hasattr(record, field):
                log_data[field] = getattr(record, field)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class ContextEnricher(logging.Filter):
    """Copy the request contextvars onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr, var in (("request_id", request_id_ctx), ("user_id", user_id_ctx), ("ip_address", ip_ctx)):
            value = var.get()
            if value and not hasattr(record, attr):
                setattr(record, attr, value)
        return True


def bind_request_context(
    *, request_id: Optional[str] = None, user_id: Optional[str] = None, ip_address: Optional[str] = None
):
    """Bind request context into contextvars; returns tokens for reset."""
    tokens = []
    if request_id is not None:
        tokens.append((request_id_ctx, request_id_ctx.set(request_id)))
    if user_id is not None:
        tokens.append((user_id_ctx, user_id_ctx.set(user_id)))
    if ip_address is not None:
        tokens.append((ip_ctx, ip_ctx.set(ip_address)))
    return tokens


def reset_request_context(tokens) -> None:
    for var, token in reversed(tokens):
        var.reset(token)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    app_name: str = "marketplace",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the root logger.

    Args:
        log_level: Minimum level for the console handler.
        log_dir: Directory for rotating log files; console only when None.
        app_name: Prefix of the log file names.
        use_json: Use JSONFormatter for file handlers.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        handler.close()
        root_logger.removeHandler(handler)

    context_filter = ContextEnricher()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    console_handler.addFilter(context_filter)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = JSONFormatter() if use_json else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        general_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{app_name}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        general_handler.setLevel(logging.DEBUG)
        general_handler.setFormatter(file_formatter)
        general_handler.addFilter(context_filter)
        root_logger.addHandler(general_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{app_name}_error.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        error_handler.addFilter(context_filter)
        root_logger.addHandler(error_handler)

    # Suppress noisy loggers
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("multipart").setLevel(logging.WARNING)

    logging.info("Logging configured. Level: %s, Directory: %s", log_level, log_dir or "console only")


def log_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_ms: float,
    ip_address: str,
    user_id: Optional[str] = None,
) -> None:
    logger = logging.getLogger("access")
    extra = {
        "user_id": user_id,
        "method": method,
        "endpoint": endpoint,
        "status_code": status_code,
        "duration": f"{duration_ms:.2f}",
    }
    logger.info(f"{method} {endpoint} - {status_code} - {duration_ms:.2f}ms - {ip_address}", extra=extra)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, bind log context and write an access line."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        ip_address = request.client.host if request.client else "unknown"
        tokens = bind_request_context(request_id=request_id, ip_address=ip_address)

        start_time = time.time()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.time() - start_time) * 1000
            log_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code if response else 500,
                duration_ms=duration_ms,
                ip_address=ip_address,
                user_id=getattr(request.state, "user_id", None),
            )
            reset_request_context(tokens)

        response.headers["X-Request-ID"] = request_id
        return response
