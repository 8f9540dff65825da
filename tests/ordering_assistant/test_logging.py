"""Tests for loguru sink setup."""

from loguru import logger

from ordering_assistant.logging import setup_logging


def test_setup_logging_writes_rotating_file(tmp_path):
    """setup_logging should create the log directory and file sink."""
    log_dir = tmp_path / "logs"
    setup_logging(level="INFO", log_dir=log_dir)

    logger.info("ordering assistant log line")
    logger.debug("filtered out below INFO")
    logger.remove()  # closes and flushes the file sink

    content = (log_dir / "assistant.log").read_text()
    assert "ordering assistant log line" in content
    assert "filtered out below INFO" not in content
