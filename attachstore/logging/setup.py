"""
Logging entry points for attachstore.

Configuration is loaded first, then logging; settings.py therefore logs
through a plain module logger. Library modules call ``get_logger(__name__)``
at import time and never configure handlers themselves.

    manager = get_config_manager()
    manager.load()
    setup_logging(manager.logging_config)
"""

import logging
from typing import Any

from attachstore.logging.log_manager import LogManager


_configured = False
_manager: LogManager | None = None


def setup_logging(logging_config: dict[str, Any]) -> None:
    """
    Apply the logging section of the configuration.

    Only the first call has an effect; later calls log a warning and return.
    """
    global _configured, _manager

    if _configured:
        logging.getLogger(__name__).warning(
            "setup_logging() called more than once; keeping the first configuration")
        return

    _manager = LogManager.get_instance(logging_config)
    _configured = True
    logging.getLogger(__name__).debug("attachstore logging initialized")


def get_logger(name: str) -> logging.Logger:
    """Return the named logger (works before and after setup_logging())."""
    if _manager is not None:
        return _manager.get_logger(name)
    return logging.getLogger(name)


def is_logging_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Forget the applied configuration (tests only)."""
    global _configured, _manager
    _configured = False
    _manager = None
    LogManager.reset_instance()
