"""Unit tests for logger utility."""

import logging
from pathlib import Path

import pytest

from listened_sweep.utils.logger import DEFAULT_LOGGER_NAME, get_logger, setup_logger


def _clear(name):
    logger = logging.getLogger(name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def logger_name(request):
    name = f"test_{request.node.name}"
    _clear(name)
    yield name
    _clear(name)


class TestLogger:
    """Test cases for logger utility."""

    def test_setup_logger_console_only(self, logger_name):
        logger = setup_logger(logger_name)

        assert logger.name == logger_name
        assert logger.level == logging.INFO
        assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)

    def test_setup_logger_with_file(self, logger_name, tmp_path):
        log_file = tmp_path / "test.log"

        logger = setup_logger(logger_name, str(log_file))
        logger.debug("Debug message")

        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        assert has_console
        assert has_file
        assert "Debug message" in log_file.read_text(encoding='utf-8')

    def test_setup_logger_no_duplicate_handlers(self, logger_name):
        logger1 = setup_logger(logger_name)
        handler_count = len(logger1.handlers)

        logger2 = setup_logger(logger_name)

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count

    def test_file_handler_added_after_get_logger(self, logger_name, tmp_path):
        """Module level get_logger() must not block a later log file."""
        get_logger(logger_name)
        log_file = tmp_path / "run.log"

        logger = setup_logger(logger_name, str(log_file))

        consoles = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]
        files = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(consoles) == 1
        assert len(files) == 1

    def test_same_log_file_is_attached_once(self, logger_name, tmp_path):
        log_file = tmp_path / "run.log"

        setup_logger(logger_name, str(log_file))
        logger = setup_logger(logger_name, str(log_file))

        files = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(files) == 1
        assert logger.level == logging.DEBUG

    def test_get_logger_default_name(self):
        logger = get_logger()

        assert logger.name == DEFAULT_LOGGER_NAME == "listened_sweep"
        assert len(logger.handlers) >= 1

    def test_setup_logger_creates_directory(self, logger_name, tmp_path):
        log_file = Path(tmp_path) / "subdir" / "nested" / "test.log"

        logger = setup_logger(logger_name, str(log_file))
        logger.info("Test message")

        assert log_file.parent.exists()
        assert log_file.exists()
