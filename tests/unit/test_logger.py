"""
Logging setup, redaction and per-position context.
"""
import json
import logging

import structlog

from trailguard.monitoring.logger import (
    REDACTED,
    get_logger,
    position_context,
    redact,
    setup_logging,
)


def test_bot_token_masked_inside_strings():
    event = {
        "event": "Telegram send failed (non-fatal)",
        "error": "Cannot connect to host api.telegram.org/bot123456:AAE-x_y9/sendMessage",
    }

    out = redact(event)

    assert "AAE-x_y9" not in out["error"]
    assert f"bot{REDACTED}/sendMessage" in out["error"]


def test_sensitive_keys_masked_but_mint_kept():
    out = redact({"bot_token": "123:abc", "token": "MintA", "nested": [{"password": "p"}]})

    assert out["bot_token"] == REDACTED
    assert out["token"] == "MintA"
    assert out["nested"][0]["password"] == REDACTED


def test_position_context_is_scoped():
    with position_context("pos-9"):
        assert structlog.contextvars.get_contextvars()["position_id"] == "pos-9"
    assert "position_id" not in structlog.contextvars.get_contextvars()


def test_setup_logging_writes_json_file(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    handlers_before = list(logging.root.handlers)
    level_before = logging.root.level
    try:
        setup_logging("INFO", "json", str(log_file))
        with position_context("pos-1"):
            get_logger("test").info("Position sampled", price="1.5")
        for handler in logging.root.handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        sampled = [line for line in lines if line["event"] == "Position sampled"]
        assert sampled[0]["position_id"] == "pos-1"
        assert sampled[0]["level"] == "info"
    finally:
        for handler in list(logging.root.handlers):
            if handler not in handlers_before:
                logging.root.removeHandler(handler)
                handler.close()
        logging.root.setLevel(level_before)
        structlog.reset_defaults()
