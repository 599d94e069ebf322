"""Pytest configuration and fixtures for logging_module tests."""

import logging
import tempfile
from pathlib import Path

import pytest

from logging_module.config import LoggingConfig


@pytest.fixture
def temp_log_dir():
    """Create a temporary log directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_log_dir):
    """Create test configuration writing into the temp directory."""
    return LoggingConfig(
        log_level="DEBUG",
        log_path=str(temp_log_dir / "logs"),
        log_file_name="test.log",
        log_file_max_bytes=4096,
        log_file_backup_count=2,
    )


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    access_level = logging.getLogger("uvicorn.access").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(access_level)
