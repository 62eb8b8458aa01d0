"""
Process logging setup and structured action records.

Modules log through ``logging.getLogger(__name__)``. Business events worth
auditing (plan created, subscription canceled, billing sweep finished) go
through ``log_action`` so every such record carries the same keys.
"""
import logging
import sys
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ACTION_LOGGER = "dhansetu.actions"

action_logger = logging.getLogger(ACTION_LOGGER)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process."""
    if level is None:
        from .config import get_settings
        level = get_settings().LOG_LEVEL

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stdout)
    # RPC and webhook calls would otherwise log every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def log_action(action_type: str, message: str, level: str = "info", **fields: Any) -> None:
    """Emit one action record: ``{"action", "message", **fields}``."""
    record = {"action": action_type, "message": message, **fields}
    emit = getattr(action_logger, level, action_logger.info)
    emit(record)
