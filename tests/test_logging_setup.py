import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from mailspool.logging_setup import MAX_LOG_FILES, sanitize_text, setup_logging


def test_setup_logging_writes_text_and_json(tmp_path: Path) -> None:
    base_log = tmp_path / "logs" / "mailspool.log"

    setup_logging(str(base_log), app_version="1.2.3", log_console_enabled=False)
    logging.getLogger("mailspool.flush").info(
        "Sent 2026-01-01-00.00.00-abcd", extra={"category": "flush"}
    )
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert base_log.exists()
    json_log = tmp_path / "logs" / "mailspool.jsonl"
    lines = [json.loads(line) for line in json_log.read_text(encoding="utf-8").splitlines()]
    sent = [line for line in lines if line["message"].startswith("Sent")]
    assert sent
    assert sent[0]["category"] == "flush"
    assert sent[0]["app_version"] == "1.2.3"
    assert sent[0]["session_id"]
    assert "flush" in base_log.read_text(encoding="utf-8")


def test_setup_logging_caps_retention(tmp_path: Path) -> None:
    setup_logging(str(tmp_path / "mailspool.log"), log_backup_count=12)

    handlers = logging.getLogger().handlers
    rotating_handlers = [handler for handler in handlers if isinstance(handler, RotatingFileHandler)]
    assert rotating_handlers
    assert all(handler.backupCount == MAX_LOG_FILES for handler in rotating_handlers)


def test_setup_logging_falls_back_to_stream(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    setup_logging(str(blocker / "logs" / "mailspool.log"), log_console_enabled=False)

    handlers = logging.getLogger().handlers
    assert handlers
    assert not any(isinstance(handler, RotatingFileHandler) for handler in handlers)


def test_sanitize_text_redacts_sensitive_values() -> None:
    message = "Queued mail for test@example.com with password=hunter2 and token: abcd1234"

    sanitized = sanitize_text(message)

    assert "test@example.com" not in sanitized
    assert "hunter2" not in sanitized
    assert "abcd1234" not in sanitized
    assert "<email>" in sanitized
    assert "password=<redacted>" in sanitized


def test_file_logging_failure_is_reported_through_fallback(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    setup_logging(str(blocker / "logs" / "mailspool.log"), log_console_enabled=False)

    err = capsys.readouterr().err
    assert "WARNING startup" in err
    assert "Failed to initialize file logging" in err
