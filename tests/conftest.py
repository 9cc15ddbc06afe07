from __future__ import annotations

import logging
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime_dirs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from user-specific directories and keep logs/queue in temp."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("MAILSPOOL_DATA_DIR", str(data_dir))
    monkeypatch.setenv("MAILSPOOL_CONFIG", str(tmp_path / "absent-config.yaml"))
    for name in (
        "MAILSPOOL_QUEUE_DIR",
        "MAILSPOOL_LOG_FILE",
        "MAILSPOOL_DEBUG",
        "MAILSPOOL_TRANSPORT",
        "MAILSPOOL_TRANSPORT_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            handler.close()
            root.removeHandler(handler)
    root.setLevel(saved_level)


@pytest.fixture
def msmtprc(tmp_path: Path) -> Path:
    path = tmp_path / "msmtprc"
    path.write_text(
        "\n".join(
            [
                "# sample transport config",
                "defaults",
                "port 587",
                "tls on",
                "",
                "account work",
                "host smtp.work.example",
                "from me@work.example",
                "",
                "account home",
                "host mail.home.example",
                "port 465",
                "",
                "account default : work",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path
