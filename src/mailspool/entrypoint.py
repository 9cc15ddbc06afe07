"""Drop-in replacement for the transport command.

Reads one message from stdin, strips the ``--spool-*`` directives and hands
the remaining arguments to the spooler unchanged. Unreachable destinations are
not an error: the mail is queued and a watcher retries it later.
"""

from __future__ import annotations

import logging
import sys
from typing import BinaryIO

import yaml

from .config import SpoolConfig, load_config
from .flush import build_flusher
from .frontend import SubmitStatus, UnknownDirective, build_submitter, split_directives
from .logging_setup import setup_logging
from .transport_resolver import TransportConfigError
from . import __version_label__

LOGGER = logging.getLogger(__name__)

USAGE = (
    "usage: mailspool-sendmail [--spool-queue] [--spool-fork] [--spool-no-watcher] "
    "[transport arguments...] < message"
)


def configure_logging(config: SpoolConfig) -> None:
    setup_logging(
        config.log_file,
        log_level=config.log_level,
        log_console_level=config.log_console_level,
        log_console_enabled=config.log_console_enabled,
        log_max_bytes=config.log_max_bytes,
        log_backup_count=config.log_backup_count,
        app_version=__version_label__,
    )


def load_runtime_config() -> SpoolConfig | None:
    try:
        return load_config()
    except (OSError, ValueError, yaml.YAMLError) as exc:
        sys.stderr.write(f"mailspool: configuration error: {exc}\n")
        return None


def main(argv: list[str] | None = None, *, stdin: BinaryIO | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        directives, forwarded = split_directives(args)
    except UnknownDirective as exc:
        sys.stderr.write(f"mailspool: {exc}\n{USAGE}\n")
        return 2

    config = load_runtime_config()
    if config is None:
        return 1
    configure_logging(config)

    payload = (stdin or sys.stdin.buffer).read()
    submitter = build_submitter(config, build_flusher(config))
    try:
        result = submitter.submit(payload, forwarded, directives)
    except TransportConfigError as exc:
        sys.stderr.write(f"mailspool: {exc}\n")
        return 1
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to queue mail: %s", exc, extra={"category": "submit"})
        sys.stderr.write(f"mailspool: failed to queue mail: {exc}\n")
        return 1

    if result.status is SubmitStatus.QUEUED:
        LOGGER.info("Mail %s queued for later delivery", result.entry_id, extra={"category": "submit"})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
