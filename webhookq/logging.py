"""
Structured Logging with Notification Context.
Plain or JSON log output, with the notification being processed attached to every record.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variable for the notification currently being handled
notification_context: ContextVar[Optional["NotificationContext"]] = ContextVar(
    "notification_context", default=None
)

_RESERVED_ATTRS = frozenset(
    [
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "lineno", "funcName", "created",
        "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "exc_info", "exc_text", "stack_info",
        "taskName", "message",
    ]
)


@dataclass
class NotificationContext:
    """Notification being processed, for log correlation"""

    notification_id: str
    webhook_url: Optional[str] = None
    queue: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, include_traceback: bool = True):
        super().__init__()
        self.include_traceback = include_traceback

    def format(self, record: logging.LogRecord) -> str:
        ctx = notification_context.get()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line_number": record.lineno,
            "process_id": record.process,
        }

        if ctx:
            log_data["notification"] = ctx.to_dict()

        if record.exc_info:
            exc_type, exc_value, exc_traceback = record.exc_info
            exception_data = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
            }
            if self.include_traceback and exc_traceback:
                exception_data["traceback"] = traceback.format_exception(
                    exc_type, exc_value, exc_traceback
                )
            log_data["exception"] = exception_data

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Adds ``notification_id`` to records so plain formats can reference it"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = notification_context.get()
        record.notification_id = ctx.notification_id if ctx else "-"
        return True


class NotificationLogContext:
    """Bind a notification to the logging context for the duration of a block"""

    def __init__(
        self,
        notification_id: Any,
        webhook_url: Optional[str] = None,
        queue: Optional[str] = None,
    ):
        self.context = NotificationContext(
            notification_id=str(notification_id),
            webhook_url=webhook_url,
            queue=queue,
        )
        self._token = None

    def __enter__(self) -> "NotificationLogContext":
        self._token = notification_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        notification_context.reset(self._token)


def setup_logging(log_level: str = "INFO", log_format: str = "simple") -> None:
    """Configure the root logger with a plain or structured (JSON) stdout handler"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_format.lower() == "structured":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(notification_id)s] %(message)s"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())
    root_logger.addHandler(console_handler)

    # Connection-level chatter from client libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
