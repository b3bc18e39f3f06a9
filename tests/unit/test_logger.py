"""
tests/unit/test_logger.py — Logging Setup Tests

setup_logging() writes JSON lines to the rotating file, and gateway session
context bound with bind_gateway_session() shows up on every line until it
is cleared.
"""

import json
import logging

import pytest
import structlog

from observability.logger import (
    bind_gateway_session,
    clear_gateway_session,
    get_logger,
    setup_logging,
)


@pytest.fixture
def log_dir(tmp_path):
    setup_logging(level="DEBUG", log_dir=tmp_path, console_output=False)
    yield tmp_path
    clear_gateway_session()
    for handler in logging.getLogger().handlers[:]:
        handler.close()
        logging.getLogger().removeHandler(handler)
    structlog.reset_defaults()


def _lines(log_dir) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    text = (log_dir / "clawcord.log").read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestSetupLogging:
    def test_writes_json_lines(self, log_dir):
        get_logger("tests.logger", component="test").info("bot.message.sent", target="/channels/1")
        entry = _lines(log_dir)[-1]
        assert entry["event"] == "bot.message.sent"
        assert entry["target"] == "/channels/1"
        assert entry["component"] == "test"
        assert entry["level"] == "info"

    def test_gateway_context_bound_and_cleared(self, log_dir):
        log = get_logger("tests.logger")
        bind_gateway_session("sess-1", "bot-1")
        log.info("gateway.ready")
        clear_gateway_session()
        log.info("gateway.closed")

        ready, closed = _lines(log_dir)[-2:]
        assert ready["gateway_session_id"] == "sess-1"
        assert ready["self_id"] == "bot-1"
        assert "gateway_session_id" not in closed

    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "nested" / "logs"
        setup_logging(log_dir=target, console_output=False)
        try:
            assert target.is_dir()
        finally:
            for handler in logging.getLogger().handlers[:]:
                handler.close()
                logging.getLogger().removeHandler(handler)
            structlog.reset_defaults()
