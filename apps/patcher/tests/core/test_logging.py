"""Tests for the structlog configuration wrapper."""

import logging

import structlog

from patcher.core.logging import configure_structlog


class TestConfigureStructlog:
    def test_configure_does_not_raise_in_debug_mode(self) -> None:
        configure_structlog(debug=True)

    def test_configure_does_not_raise_in_json_mode(self) -> None:
        configure_structlog(debug=False)

    def test_logger_usable_after_configure(self) -> None:
        configure_structlog(debug=True)
        logger = structlog.get_logger("test")
        logger.info("test message", key="value")

    def test_configure_multiple_times_is_safe(self) -> None:
        configure_structlog(debug=True)
        configure_structlog(debug=False)
        configure_structlog(debug=True)
        assert len(logging.getLogger().handlers) == 1

    def test_stdlib_logs_go_to_stderr_as_json(self, capsys) -> None:
        configure_structlog(debug=False)
        logging.getLogger("patcher.test").warning("stdlib message")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert '"event": "stdlib message"' in captured.err
        assert '"level": "warning"' in captured.err

    def test_verbose_enables_debug(self) -> None:
        configure_structlog(debug=True, verbose=True)
        assert logging.getLogger().level == logging.DEBUG
        configure_structlog(debug=True)
        assert logging.getLogger().level == logging.INFO
