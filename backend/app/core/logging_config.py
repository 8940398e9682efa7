"""
Thesis Supervision Tracker - Logging Configuration

Plain text with request context in development, one JSON object per line in
production. Every record carries the request, user and guidance session it
belongs to when those are known.
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from contextvars import ContextVar

from app.core.config import settings


# Per-request tracing fields, reset by RequestLoggingMiddleware
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
guidance_id_var: ContextVar[str] = ContextVar('guidance_id', default='')

CONTEXT_VARS: Dict[str, ContextVar] = {
    'request_id': request_id_var,
    'user_id': user_id_var,
    'guidance_id': guidance_id_var,
}


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def set_guidance_id(guidance_id: str) -> None:
    """Tag following records with the guidance session being worked on"""
    guidance_id_var.set(guidance_id)


def clear_context() -> None:
    for var in CONTEXT_VARS.values():
        var.set('')


def log_context() -> Dict[str, str]:
    """Tracing fields that are currently set"""
    return {name: var.get() for name, var in CONTEXT_VARS.items() if var.get()}


def generate_request_id() -> str:
    """Short id for X-Request-ID when the caller sent none"""
    return uuid.uuid4().hex[:8]


# LogRecord attributes that are not user supplied "extra" fields
_STANDARD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'taskName'}


class JSONFormatter(logging.Formatter):
    """One JSON document per record for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **log_context(),
        }

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
            }

        payload.update({
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in CONTEXT_VARS and not key.startswith('_')
        })
        return json.dumps(payload, default=str)


class ContextualFormatter(logging.Formatter):
    """Readable output with the tracing fields; '-' when unset"""

    def format(self, record: logging.LogRecord) -> str:
        context = log_context()
        for name in CONTEXT_VARS:
            setattr(record, name, context.get(name, '-'))
        return super().format(record)


class SupervisionLogger(logging.Logger):
    """Logger with helpers for lifecycle transitions and unexpected errors"""

    def log_transition(self, entity: str, entity_id: str, from_state: Optional[str],
                       to_state: str, actor_id: Optional[str] = None, **kwargs) -> None:
        """One INFO record per status change of a session, milestone or supervisor-2 request"""
        actor = f" by {actor_id}" if actor_id else ""
        self.info(
            f"{entity} {entity_id}: {from_state or '∅'} → {to_state}{actor}",
            extra={
                "event_type": "transition",
                "entity": entity,
                "entity_id": entity_id,
                "from_state": from_state,
                "to_state": to_state,
                "actor_id": actor_id,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: Optional[str] = None,
                               **kwargs) -> None:
        self.error(
            f"Error in {context}: {type(error).__name__}: {error}",
            exc_info=error,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_context": context,
                **kwargs
            }
        )


def _file_handler(formatter: logging.Formatter, backup_count: int) -> RotatingFileHandler:
    path = Path(settings.LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=backup_count)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> SupervisionLogger:
    """Configure the "supervision" logger from settings"""
    logging.setLoggerClass(SupervisionLogger)

    logger = logging.getLogger("supervision")
    logger.__class__ = SupervisionLogger  # may predate setLoggerClass
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()

    json_logging = settings.ENVIRONMENT == "production"
    if json_logging:
        console_formatter = file_formatter = JSONFormatter()
    else:
        console_formatter = ContextualFormatter("%(levelname)-8s | %(message)s")
        file_formatter = ContextualFormatter(
            "%(asctime)s | %(levelname)-8s | [%(request_id)s] [%(user_id)s] [%(guidance_id)s] | "
            "%(funcName)s:%(lineno)d | %(message)s"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if settings.LOG_FILE:
        logger.addHandler(_file_handler(file_formatter, backup_count=10 if json_logging else 5))

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info(
        "Logging initialized",
        extra={"environment": settings.ENVIRONMENT, "log_level": settings.LOG_LEVEL, "json_logging": json_logging}
    )
    return logger


logger: SupervisionLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'set_request_id',
    'set_user_id',
    'set_guidance_id',
    'clear_context',
    'log_context',
    'generate_request_id',
    'SupervisionLogger',
]
