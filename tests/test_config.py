from pathlib import Path

import pytest

from mailspool.config import build_config, get_config_path, get_user_data_dir, load_config


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_config()

    data_dir = tmp_path / "data"
    assert get_user_data_dir() == data_dir
    assert config.queue_path == data_dir / "queue"
    assert config.watcher_lock_path == data_dir / "queue" / ".watcher.lock"
    assert config.log_file == str(data_dir / "logs" / "mailspool.log")
    assert config.transport_command == "msmtp"
    assert config.transport_config == str(Path("~/.msmtprc").expanduser())
    assert config.poll_interval_seconds == 30
    assert config.immediate_probe_timeout_seconds == 2
    assert config.watcher_probe_timeout_seconds == 10


def test_values_from_yaml_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "queue_dir: '/var/spool/mailspool'",
                "transport_command: '/usr/bin/msmtp'",
                "transport_config: '/etc/msmtprc'",
                "poll_interval_seconds: 5",
                "log_level: 'debug'",
                "watcher_lock_file: 'run/watcher.lock'",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("MAILSPOOL_CONFIG", str(config_path))
    assert get_config_path() == config_path

    config = load_config()

    assert config.queue_dir == str(Path("/var/spool/mailspool"))
    assert config.transport_command == "/usr/bin/msmtp"
    assert config.transport_config == str(Path("/etc/msmtprc"))
    assert config.poll_interval_seconds == 5
    assert config.log_level == "DEBUG"
    assert config.watcher_lock_path == tmp_path / "data" / "run" / "watcher.lock"


def test_env_overrides_file_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("transport_command: 'msmtp'\n", encoding="utf-8")
    monkeypatch.setenv("MAILSPOOL_TRANSPORT", "/opt/bin/sendmail-relay")
    monkeypatch.setenv("MAILSPOOL_QUEUE_DIR", str(tmp_path / "spool"))

    config = load_config(str(config_path))

    assert config.transport_command == "/opt/bin/sendmail-relay"
    assert config.queue_path == tmp_path / "spool"


def test_debug_env_raises_log_levels(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAILSPOOL_DEBUG", "yes")

    config = load_config()

    assert config.log_level == "DEBUG"
    assert config.log_console_level == "DEBUG"


def test_unknown_keys_are_ignored(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("poll_interval_seconds: 7\nretry_forever: true\n", encoding="utf-8")

    config = load_config(str(config_path))

    assert config.poll_interval_seconds == 7
    assert "retry_forever" in caplog.text


def test_explicit_missing_path_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError, match="mapping"):
        load_config(str(config_path))


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"poll_interval_seconds": 0}, "poll_interval_seconds"),
        ({"immediate_probe_timeout_seconds": -1}, "immediate_probe_timeout_seconds"),
        ({"watcher_probe_timeout_seconds": 0}, "watcher_probe_timeout_seconds"),
        ({"transport_command": "  "}, "transport_command"),
        ({"log_max_bytes": 10}, "log_max_bytes"),
        ({"log_level": "LOUD"}, "log_level"),
    ],
)
def test_invalid_values_rejected(overrides: dict, field: str) -> None:
    with pytest.raises(ValueError, match=field):
        build_config(overrides)
