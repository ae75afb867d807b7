# filemanager/monitoring/logger.py
"""
Structured JSON logger for the file manager core.
"""
import logging
import json
from datetime import datetime
from typing import Optional

import structlog


def get_request_context():
    # Import lazily to avoid import cycles
    from filemanager.monitoring.context import get_request_context as _g
    return _g()

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "component": getattr(record, "component", None) or record.module,
            "request_id": getattr(record, "request_id", None),
            "storage": getattr(record, "storage", None),
        }
        details = getattr(record, "details", None)
        if details is not None:
            log_record["details"] = details
        return json.dumps(log_record, default=str)

logger = logging.getLogger("filemanager")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(JsonFormatter())
logger.handlers = [handler]


def configure_logging(level: str = "INFO") -> None:
    """Apply the configured level to the stdlib logger and route structlog through it."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
    )


# Helper to log with context
def log(level: str, message: str, component: Optional[str] = None, request_id: Optional[str] = None,
        storage: Optional[str] = None, **kwargs):
    # Map legacy 'module' kwarg to 'component' to avoid LogRecord collision
    if "module" in kwargs and not component:
        component = kwargs.pop("module")
    # Fill missing fields from contextvars
    ctx = get_request_context()
    if request_id is None:
        request_id = ctx.get("request_id")
    if storage is None:
        storage = ctx.get("storage")

    extra = {
        "request_id": request_id,
        "storage": storage,
        "component": component,
        **kwargs
    }
    logger.log(getattr(logging, level.upper(), logging.INFO), message, extra=extra)
