"""
tdeed - Structured Logging Configuration

Configures structured JSON logging:
- JSON format for easy parsing and aggregation
- Optional rotating file handler
- Environment and service tags on every record

Usage:
    from tdeed.core.logging_config import setup_logging

    logger = setup_logging(name="tdeed", level="DEBUG")
    logger.info("Permission resolved", extra={"event": "permission.granted"})
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from tdeed.core import config


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with additional context fields.

    Adds timestamp, environment, service and source location to all records.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "tdeed",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or config.ENVIRONMENT
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "tdeed",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
    environment: Optional[str] = None,
    enable_console: bool = True,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Setup structured JSON logging.

    Args:
        name: Logger name (the package logger by default)
        log_file: Path to JSON log file; falls back to TDEED_LOG_FILE
        level: Logging level; falls back to TDEED_LOG_LEVEL
        environment: Environment identifier; falls back to TDEED_ENVIRONMENT
        enable_console: Whether to log to stderr
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger instance
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_file = log_file or config.LOG_FILE

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    formatter = CustomJsonFormatter(
        environment=environment,
        service_name=name.split(".")[0],
    )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning("Could not create file handler for %s: %s", log_file, e)

    return logger


def truncate_address(address: Optional[str]) -> str:
    """Shorten an address for log context."""
    if not address or len(address) < 10:
        return "UNKNOWN"
    return f"{address[:6]}...{address[-4:]}"
