"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from bank_sync.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_sync(
    connection_id: str,
    user_id: str,
    sync_type: str,
    status: str,
    imported: int,
    skipped: int,
    errors: int,
    duration_ms: int,
    error_message: str | None = None,
) -> None:
    """Log structured sync outcome for diagnosis"""
    level = logging.ERROR if status == "failed" else logging.INFO
    logging.log(
        level,
        "Bank sync completed" if status != "failed" else "Bank sync failed",
        extra={
            "connection_id": connection_id,
            "user_id": user_id,
            "step": "sync_complete",
            "sync_type": sync_type,
            "sync_status": status,
            "imported": imported,
            "skipped": skipped,
            "errors": errors,
            "duration_ms": duration_ms,
            "error_message": error_message,
        },
    )
