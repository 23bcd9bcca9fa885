"""
Logging setup, structured JSON output and the in-process error tracker.

Passwords, password hashes, session tokens and client secrets never reach
the log stream: every ``extra=`` value goes through ``redact``.
"""

import json
import logging
import time
from collections import Counter, deque
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "token",
        "session_token",
        "client_secret",
        "authorization",
        "cookie",
        "secret",
        "stripe_signature",
    }
)

# Атрибуты любого LogRecord; всё остальное пришло через extra=
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx", "aiosqlite")


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return name in SENSITIVE_KEYS or "password" in name


def redact(value: Any) -> Any:
    """Рекурсивно скрыть значения чувствительных ключей"""
    if isinstance(value, dict):
        return {
            key: "***" if _is_sensitive(key) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись, поля extra= на верхнем уровне"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key, value in redact(extra).items():
            entry[key] = _jsonable(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


def setup_logging(log_level: str = "INFO", log_format: str = "text"):
    """
    Настроить root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: "json" для production, "text" для разработки
    """
    if log_format.lower() == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured: level={log_level}, format={log_format}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class ErrorTracker:
    """Счётчики ошибок по типу и последние ошибки (для /api/health)"""

    def __init__(self, max_history: int = 100):
        self.error_counts = Counter()
        self.last_errors = deque(maxlen=max_history)

    def track_error(
        self, error_type: str, error_message: str, context: Dict[str, Any] = None
    ):
        self.error_counts[error_type] += 1
        context = redact(context or {})
        self.last_errors.append(
            {
                "timestamp": time.time(),
                "type": error_type,
                "message": error_message,
                "context": context,
            }
        )

        logger.debug(
            f"Error tracked: {error_type}",
            extra={
                "error_type": error_type,
                "total_count": self.error_counts[error_type],
                "context": context,
            },
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "error_counts": dict(self.error_counts),
            "total_errors": sum(self.error_counts.values()),
            "unique_error_types": len(self.error_counts),
            "last_errors": list(self.last_errors)[-10:],
        }

    def reset_stats(self):
        self.error_counts.clear()
        self.last_errors.clear()


error_tracker = ErrorTracker()


def log_business_event(
    event: str,
    entity_type: str,
    entity_id: Optional[int],
    details: Dict[str, Any] = None,
):
    """
    Записать доменное событие (club_created, application_reviewed,
    payment_status_changed, ...) с категорией business_event.
    """
    logger.info(
        f"Business event: {event}",
        extra={
            "event": event,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": redact(details or {}),
            "category": "business_event",
        },
    )
