"""Tests for the package logger."""

import logging

from kdbxreader.core.observability import configure_logging, get_logger


class TestLogger:
    def test_package_logger(self):
        logger = get_logger()
        assert logger.name == "kdbxreader"
        assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)

    def test_stage_loggers_share_it(self):
        from kdbxreader.core import keys, payload, pipeline

        assert keys.logger is payload.logger is pipeline.logger is get_logger()

    def test_unknown_level_does_not_raise(self, monkeypatch):
        monkeypatch.setenv("KDBXREADER_LOG_LEVEL", "chatty")
        configure_logging()
        configure_logging("debug")
