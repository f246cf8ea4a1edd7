"""Logging for the LaborHire service.

Loggers live under ``laborhire.service``. Admin actions get one structured
line each so they can be audited from the log alongside the database log.
"""

import logging
import sys

SERVICE_LOGGER = "laborhire.service"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Attach a stdout handler to the service logger once."""
    logger = logging.getLogger(SERVICE_LOGGER)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    if not name.startswith(SERVICE_LOGGER):
        name = f"{SERVICE_LOGGER}.{name}"
    return logging.getLogger(name)


def log_admin_event(action: str, admin_user_id: str, target_id: str, **fields) -> None:
    """Log an admin action performed through the service."""
    extra = "".join(f" | {key}={value}" for key, value in fields.items() if value is not None)
    get_logger("admin").info(f"admin {action} | admin={admin_user_id} | target={target_id}{extra}")
