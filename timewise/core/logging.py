"""Structured JSON logging for the API and the worker."""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from timewise.models.base import utcnow

_CONTEXT_FIELDS = ("tenant_id", "user_id", "staff_id", "reference")


class TimeWiseJsonFormatter(JsonFormatter):
    """Adds timestamp / level / logger and any request context passed via ``extra``."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = str(value)


def configure_logging(level: str = "INFO") -> None:
    """Route the root logger through a single JSON stdout handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(TimeWiseJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s"))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    # SQL echo and access logs are noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
