"""
Logging setup for laborhire.

All library loggers live under the ``laborhire`` hierarchy. Nothing is
configured on import; an application calls ``setup_laborhire_logging`` once
at start-up. The ``log_*`` helpers write one structured line per event so
payment and messaging activity can be grepped out of the daily file.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

ROOT_LOGGER = "laborhire"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_log_dir(log_dir: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the log directory: explicit arg, LABORHIRE_LOG_DIR, then ~/.laborhire/logs."""
    if log_dir:
        return Path(log_dir)
    env_dir = os.environ.get("LABORHIRE_LOG_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".laborhire" / "logs"


def setup_laborhire_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """Configure the ``laborhire`` logger.

    Adds a file handler writing to ``client-YYYY-MM-DD.log``. At DEBUG a
    console handler is added as well. Calling this again reuses the handlers
    already installed.

    Args:
        level: Level name, case-insensitive. Unknown names fall back to INFO.
        log_dir: Directory for the log file.

    Returns:
        The configured ``laborhire`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        directory = get_log_dir(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(directory / f"client-{date}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def _fields(**fields: Any) -> str:
    return " | ".join(f"{key}={value}" for key, value in fields.items() if value is not None)


def log_payment_event(event: str, **fields: Any) -> None:
    """Log a payment lifecycle event (created, top_up, confirmed, rejected)."""
    logging.getLogger(f"{ROOT_LOGGER}.payments").info(f"payment {event} | {_fields(**fields)}")


def log_message_event(event: str, **fields: Any) -> None:
    """Log a messaging event (sent, rolled_back, conversation_unified...)."""
    logging.getLogger(f"{ROOT_LOGGER}.messaging").info(f"message {event} | {_fields(**fields)}")


def log_realtime_event(channel: str, table: str, event_type: str, **fields: Any) -> None:
    """Log a realtime change delivered to a channel."""
    logging.getLogger(f"{ROOT_LOGGER}.realtime").debug(
        f"change {channel} | table={table} | type={event_type} | {_fields(**fields)}"
    )
