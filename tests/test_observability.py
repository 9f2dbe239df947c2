"""
Tests for logging setup — level precedence and the optional file handler.
"""

import logging
from pathlib import Path

import pytest

from dws.core.observability.logging_config import parse_level, resolve_level, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestLevels:
    def test_parse(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Error ") == logging.ERROR
        assert parse_level(None) == logging.WARNING
        assert parse_level("chatty") == logging.WARNING
        assert parse_level(15) == 15

    def test_flag_beats_env(self):
        assert resolve_level("DEBUG", {"DWS_LOG_LEVEL": "ERROR"}) == logging.DEBUG

    def test_env_beats_default(self):
        assert resolve_level(None, {"DWS_LOG_LEVEL": "info"}) == logging.INFO
        assert resolve_level(None, {}) == logging.WARNING


class TestSetup:
    def test_single_console_handler(self):
        setup_logging("INFO", env={})
        setup_logging("INFO", env={})
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "dws.log"
        level = setup_logging(None, env={"DWS_LOG_FILE": str(log_file), "DWS_LOG_FILE_LEVEL": "DEBUG"})
        assert level == logging.WARNING
        assert logging.getLogger().level == logging.DEBUG

        logging.getLogger("dws.test").debug("written to file only")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "written to file only" in log_file.read_text()
