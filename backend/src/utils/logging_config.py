"""
Structured logging configuration for the temple-events backend.

Provides JSON-formatted logging with file rotation for production environments
and human-readable console logging for development.

Loggers:
- api: HTTP requests, responses, error translation
- services: Lifecycle transitions, location registry operations
- sync: External calendar reconciliation and snapshot cache activity
- db: Database operations, migrations
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMESPACE = "temple_events"
LOGGER_NAMES = ["api", "services", "sync", "db"]


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per log record.

    Each record includes timestamp, level, logger, message, module,
    function and line, plus exception text and any ``extra`` fields
    passed by the caller.
    """

    _RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields supplied through logger.info("msg", extra={...})
        for key, value in vars(record).items():
            if key not in self._RESERVED and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable formatter for console output in development.

    Format: [TIMESTAMP] LEVEL - LOGGER - MESSAGE
    Example: [2026-03-02 10:30:45] INFO - temple_events.services - Approved event evt_01...
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )


def _get_log_level() -> int:
    """
    Get log level from the TEMPLE_EVENTS_LOG_LEVEL environment variable.

    Defaults to INFO when unset or unrecognized.
    """
    level_str = os.environ.get("TEMPLE_EVENTS_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def _get_log_dir() -> Path:
    """Get (and create) the log directory from TEMPLE_EVENTS_LOG_DIR, default ./logs."""
    log_dir = Path(os.environ.get("TEMPLE_EVENTS_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _is_production() -> bool:
    """Check TEMPLE_EVENTS_ENV for a production deployment."""
    return os.environ.get("TEMPLE_EVENTS_ENV", "development").lower() == "production"


def configure_logging() -> Dict[str, logging.Logger]:
    """
    Configure the named backend loggers.

    Behavior:
    - Production (TEMPLE_EVENTS_ENV=production):
      * JSON-formatted logs to rotating files, one per logger
      * 10MB max size, 5 backup files
    - Development (default):
      * Human-readable console output

    Returns:
        Dictionary mapping short logger names (api, services, sync, db)
        to configured Logger instances
    """
    log_level = _get_log_level()
    is_prod = _is_production()
    log_dir = _get_log_dir() if is_prod else None

    loggers = {}

    for logger_name in LOGGER_NAMES:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{logger_name}")
        logger.setLevel(log_level)
        logger.propagate = False
        logger.handlers.clear()

        if is_prod:
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / f"{logger_name}.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)
        else:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(ConsoleFormatter())
            logger.addHandler(console_handler)

        loggers[logger_name] = logger

    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger by short name.

    Args:
        name: Logger name (api, services, sync, db)

    Raises:
        ValueError: If logger name is not recognized

    Example:
        >>> logger = get_logger("sync")
        >>> logger.info("Reconciled calendar", extra={"calendar_id": "cal-1"})
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. "
            f"Valid names: {', '.join(_loggers.keys())}"
        )

    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """Initialize logging configuration (called on application startup)."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
