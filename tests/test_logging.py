"""Tests for logging setup."""

import logging

from attachstore.logging.log_manager import LogManager
from attachstore.logging.setup import (
    get_logger,
    is_logging_configured,
    reset_logging,
    setup_logging,
)


def test_get_logger_before_setup():
    assert not is_logging_configured()
    logger = get_logger("attachstore.test")
    assert logger is logging.getLogger("attachstore.test")


def test_setup_applies_dict_config(tmp_path):
    log_file = tmp_path / "logs" / "attachstore.log"
    setup_logging({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": "%(levelname)s %(message)s"}},
        "handlers": {
            "file": {
                "class": "logging.FileHandler",
                "filename": str(log_file),
                "formatter": "plain",
                "level": "DEBUG",
            },
        },
        "loggers": {
            "attachstore.filetest": {"level": "DEBUG", "handlers": ["file"]},
        },
    })

    assert is_logging_configured()
    assert log_file.parent.is_dir()

    get_logger("attachstore.filetest").info("hello from test")
    for handler in logging.getLogger("attachstore.filetest").handlers:
        handler.flush()
    assert "INFO hello from test" in log_file.read_text()

    for handler in list(logging.getLogger("attachstore.filetest").handlers):
        handler.close()
        logging.getLogger("attachstore.filetest").removeHandler(handler)


def test_empty_config_leaves_logging_alone():
    root_handlers = list(logging.getLogger().handlers)
    setup_logging({"version": 1, "handlers": {}, "root": {}, "loggers": {}})
    assert logging.getLogger().handlers == root_handlers


def test_second_setup_is_ignored():
    setup_logging({})
    first = LogManager._instance
    setup_logging({"handlers": {"console": {"class": "logging.StreamHandler"}}})
    assert LogManager._instance is first


def test_reset_logging():
    setup_logging({})
    reset_logging()
    assert not is_logging_configured()
    assert LogManager._instance is None


def test_invalid_config_falls_back():
    setup_logging({"handlers": {"broken": {"class": "no.such.Handler"}}})
    assert is_logging_configured()
    assert LogManager._instance.applied is False
