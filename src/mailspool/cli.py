from __future__ import annotations

import argparse
import cmd
import sys
from typing import TextIO

from .config import SpoolConfig
from .entrypoint import configure_logging, load_runtime_config
from .flush import FlushOutcome, Flusher, build_flusher
from .queue_store import EntryInfo, EntryNotFound, QueueStore
from .watcher import build_watcher


def format_entry(info: EntryInfo) -> str:
    queued_at = info.queued_at.strftime("%Y-%m-%d %H:%M:%S")
    args = " ".join(info.args) or "-"
    return f"{info.entry_id}  {queued_at}  {info.size_bytes:>8} B  {args}"


def list_queue(store: QueueStore, out: TextIO) -> int:
    entry_ids = store.list_ids()
    if not entry_ids:
        out.write("Queue is empty.\n")
    for entry_id in entry_ids:
        try:
            out.write(format_entry(store.describe(entry_id)) + "\n")
        except EntryNotFound:
            continue
    orphans = store.list_orphans()
    if orphans:
        out.write(
            f"{len(orphans)} orphaned arguments file(s) without a payload; "
            "run 'cleanup' to remove them.\n"
        )
    return 0


def flush_entries(flusher: Flusher, entry_ids: list[str], out: TextIO) -> int:
    if not entry_ids:
        report = flusher.flush_all()
        out.write(
            f"Sent {report.sent}, failed {report.failed}, busy {report.locked}; "
            f"{len(report.remaining)} still queued.\n"
        )
        return 0 if not report.failed else 1

    status = 0
    for entry_id in entry_ids:
        try:
            outcome = flusher.flush(entry_id)
        except EntryNotFound:
            out.write(f"{entry_id}: not found\n")
            status = 1
            continue
        out.write(f"{entry_id}: {outcome.value}\n")
        if outcome is FlushOutcome.FAILED:
            status = 1
    return status


def cleanup_orphans(store: QueueStore, out: TextIO) -> int:
    removed = 0
    for entry_id in store.list_orphans():
        if store.remove_orphan(entry_id):
            removed += 1
    out.write(f"Removed {removed} orphaned arguments file(s).\n")
    return 0


class SpoolShell(cmd.Cmd):
    intro = "MailSpool queue shell. Type 'help' for commands."
    prompt = "mailspool> "

    def __init__(self, config: SpoolConfig) -> None:
        super().__init__()
        self._flusher = build_flusher(config)

    def do_list(self, _arg: str) -> None:
        """List queued mail."""
        list_queue(self._flusher.store, self.stdout)

    def do_flush(self, arg: str) -> None:
        """Send queued mail now. 'flush' sends everything, 'flush <id> ...' only those ids."""
        flush_entries(self._flusher, arg.split(), self.stdout)

    def do_cleanup(self, _arg: str) -> None:
        """Remove arguments files left behind by an interrupted delivery."""
        cleanup_orphans(self._flusher.store, self.stdout)

    def do_quit(self, _arg: str) -> bool:
        """Exit this shell."""
        return True

    def do_EOF(self, _arg: str) -> bool:
        self.stdout.write("\n")
        return True


def _cli_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="MailSpool queue management")
    parser.add_argument(
        "command",
        nargs="?",
        choices=["list", "flush", "watch", "cleanup"],
        help="Run a single command and exit.",
    )
    parser.add_argument(
        "ids",
        nargs="*",
        help="Queue entry ids for 'flush' (default: every queued entry).",
    )
    args = parser.parse_args(argv)
    if args.ids and args.command != "flush":
        parser.error("entry ids are only accepted by 'flush'")

    config = load_runtime_config()
    if config is None:
        return 1
    configure_logging(config)

    if args.command is None:
        SpoolShell(config).cmdloop()
        return 0

    flusher = build_flusher(config)
    if args.command == "list":
        return list_queue(flusher.store, sys.stdout)
    if args.command == "flush":
        return flush_entries(flusher, args.ids, sys.stdout)
    if args.command == "cleanup":
        return cleanup_orphans(flusher.store, sys.stdout)
    if args.command == "watch":
        build_watcher(config, flusher).run()
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(_cli_main())
