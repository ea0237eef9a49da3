"""
Process-wide logging configuration for attachstore.

LogManager applies the ``logging`` section of the configuration once per
process. Directories for file-based handlers are created before the
configuration is applied so a fresh deployment can log to ``logs/...``.
"""

import logging
import logging.config
import os


class LogManager:
    """
    Applies a dictConfig mapping and hands out loggers.

    Attributes:
        _instance (LogManager | None): The process-wide manager
        logger_settings (dict): The dictConfig mapping that was applied
    """

    _instance: 'LogManager | None' = None

    def __init__(self, logger_settings: dict | None):
        """
        Args:
            logger_settings (dict | None): dictConfig mapping; an empty
                mapping leaves the host application's logging untouched
        """
        self.logger_settings = dict(logger_settings or {})
        self.applied = False
        if not self._declares_outputs():
            return

        self.logger_settings.setdefault('version', 1)
        self._create_log_directories()
        try:
            logging.config.dictConfig(self.logger_settings)
            self.applied = True
        except (ValueError, TypeError, AttributeError, ImportError) as e:
            logging.basicConfig(level=logging.WARNING)
            logging.getLogger(__name__).warning(
                f"Invalid logging configuration, using basicConfig instead: {e}")

    def _declares_outputs(self) -> bool:
        sections = ('handlers', 'root', 'loggers')
        return any(self.logger_settings.get(section) for section in sections)

    def _create_log_directories(self) -> None:
        for handler in self.logger_settings.get('handlers', {}).values():
            filename = handler.get('filename') if isinstance(handler, dict) else None
            directory = os.path.dirname(filename) if filename else ""
            if directory:
                os.makedirs(directory, exist_ok=True)

    @classmethod
    def get_instance(cls, logger_settings: dict | None = None) -> 'LogManager':
        """Return the manager, creating it from logger_settings on first use."""
        if cls._instance is None:
            cls._instance = cls(logger_settings)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)
