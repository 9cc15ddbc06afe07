from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from mailspool import cli
from mailspool.config import load_config
from mailspool.flush import Flusher
from mailspool.queue_store import QueueStore
from mailspool.transport import DeliveryResult, Transport


class RecordingTransport(Transport):
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[list[str]] = []

    def deliver(self, args: Sequence[str], payload: bytes) -> DeliveryResult:
        self.calls.append(list(args))
        return DeliveryResult(returncode=1 if args[-1] in self.failing else 0)


@pytest.fixture
def store() -> QueueStore:
    return QueueStore(load_config().queue_path)


@pytest.fixture
def transport(monkeypatch: pytest.MonkeyPatch) -> RecordingTransport:
    recording = RecordingTransport()
    monkeypatch.setattr(
        cli,
        "build_flusher",
        lambda config: Flusher(QueueStore(config.queue_path), recording),
    )
    return recording


def test_list_empty_queue(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli._cli_main(["list"]) == 0
    assert "Queue is empty." in capsys.readouterr().out


def test_list_shows_entries_and_orphans(store: QueueStore, capsys: pytest.CaptureFixture[str]) -> None:
    entry_id = store.enqueue(b"12345", ["-a", "work", "ops@example.com"])
    orphan = store.enqueue(b"x", ["other@example.com"])
    store.payload_path(orphan).unlink()

    assert cli._cli_main(["list"]) == 0

    out = capsys.readouterr().out
    assert entry_id in out
    assert "-a work ops@example.com" in out
    assert orphan not in out
    assert "1 orphaned arguments file(s)" in out


def test_flush_all_reports_counts(
    store: QueueStore, transport: RecordingTransport, capsys: pytest.CaptureFixture[str]
) -> None:
    store.enqueue(b"1", ["a@example.com"])
    store.enqueue(b"2", ["b@example.com"])

    assert cli._cli_main(["flush"]) == 0

    assert "Sent 2, failed 0" in capsys.readouterr().out
    assert store.list_ids() == []
    assert len(transport.calls) == 2


def test_flush_all_with_failure_exits_nonzero(
    store: QueueStore, transport: RecordingTransport
) -> None:
    transport.failing.add("b@example.com")
    store.enqueue(b"1", ["a@example.com"])
    failed = store.enqueue(b"2", ["b@example.com"])

    assert cli._cli_main(["flush"]) == 1
    assert store.list_ids() == [failed]


def test_flush_selected_ids(
    store: QueueStore, transport: RecordingTransport, capsys: pytest.CaptureFixture[str]
) -> None:
    chosen = store.enqueue(b"1", ["a@example.com"])
    left = store.enqueue(b"2", ["b@example.com"])

    assert cli._cli_main(["flush", chosen]) == 0

    assert f"{chosen}: sent" in capsys.readouterr().out
    assert store.list_ids() == [left]


def test_flush_missing_id_fails(transport: RecordingTransport, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli._cli_main(["flush", "2026-01-01-00.00.00-dead"]) == 1
    assert "not found" in capsys.readouterr().out
    assert transport.calls == []


def test_cleanup_removes_orphans_only(store: QueueStore, capsys: pytest.CaptureFixture[str]) -> None:
    kept = store.enqueue(b"1", ["a@example.com"])
    orphan = store.enqueue(b"2", ["b@example.com"])
    store.payload_path(orphan).unlink()

    assert cli._cli_main(["cleanup"]) == 0

    assert "Removed 1 orphaned" in capsys.readouterr().out
    assert store.list_orphans() == []
    assert store.list_ids() == [kept]


def test_bad_config_exits_with_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("poll_interval_seconds: 0\n", encoding="utf-8")
    monkeypatch.setenv("MAILSPOOL_CONFIG", str(config_path))

    assert cli._cli_main(["list"]) == 1
    assert "configuration error" in capsys.readouterr().err


def test_shell_commands(store: QueueStore, transport: RecordingTransport) -> None:
    store.enqueue(b"1", ["a@example.com"])
    shell = cli.SpoolShell(load_config())

    assert shell.onecmd("flush") is None
    assert store.list_ids() == []
    assert shell.onecmd("quit") is True


@pytest.mark.parametrize("command", ["list", "cleanup", "watch"])
def test_ids_rejected_outside_flush(command: str, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli._cli_main([command, "2026-01-01-00.00.00-dead"])

    assert excinfo.value.code == 2
    assert "only accepted by 'flush'" in capsys.readouterr().err
