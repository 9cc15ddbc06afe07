from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

from .io_utils import atomic_write_text, unlink_quiet, write_bytes_synced

LOGGER = logging.getLogger(__name__)

PAYLOAD_SUFFIX = ".mail"
ARGS_SUFFIX = ".comm"
TEMP_SUFFIX = ".tmp"

# Arguments come from sys.argv, which smuggles undecodable bytes through as
# lone surrogates; surrogateescape writes those bytes back out unchanged.
ARGS_ENCODING = "utf-8"
ARGS_ERRORS = "surrogateescape"

_ID_ATTEMPTS = 5


class EntryNotFound(LookupError):
    """Raised when a queue entry id has no backing files."""

    def __init__(self, entry_id: str, detail: str = "") -> None:
        self.entry_id = entry_id
        message = f"Queue entry not found: {entry_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


@dataclass(frozen=True)
class QueueEntry:
    entry_id: str
    payload_path: Path
    args_path: Path


@dataclass(frozen=True)
class EntryInfo:
    entry_id: str
    queued_at: datetime
    size_bytes: int
    args: list[str]


def new_entry_id(now: datetime) -> str:
    return f"{now.strftime('%Y-%m-%d-%H.%M.%S')}-{uuid.uuid4().hex[:8]}"


def _encode_args(args: Sequence[str]) -> str:
    for arg in args:
        if "\n" in arg or "\r" in arg:
            raise ValueError(f"Transport argument contains a line break: {arg!r}")
    if not args:
        return ""
    text = "\n".join(args) + "\n"
    try:
        text.encode(ARGS_ENCODING, ARGS_ERRORS)
    except UnicodeEncodeError as exc:
        raise ValueError(
            f"Transport argument cannot be stored: {exc.object[exc.start:exc.end]!r}"
        ) from exc
    return text


def _decode_args(text: str) -> list[str]:
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


class QueueStore:
    """Spool directory holding one ``.mail``/``.comm`` pair per entry."""

    def __init__(self, queue_dir: Path) -> None:
        self.queue_dir = queue_dir

    def _now(self) -> datetime:
        return datetime.now()

    def payload_path(self, entry_id: str) -> Path:
        return self.queue_dir / f"{entry_id}{PAYLOAD_SUFFIX}"

    def args_path(self, entry_id: str) -> Path:
        return self.queue_dir / f"{entry_id}{ARGS_SUFFIX}"

    def temp_path(self, entry_id: str) -> Path:
        return self.queue_dir / f"{entry_id}{TEMP_SUFFIX}"

    def entry(self, entry_id: str) -> QueueEntry:
        return QueueEntry(
            entry_id=entry_id,
            payload_path=self.payload_path(entry_id),
            args_path=self.args_path(entry_id),
        )

    def exists(self, entry_id: str) -> bool:
        return self.payload_path(entry_id).is_file() and self.args_path(entry_id).is_file()

    def enqueue(self, payload: bytes, args: Sequence[str]) -> str:
        encoded_args = _encode_args(args)
        self.queue_dir.mkdir(parents=True, exist_ok=True)

        for _ in range(_ID_ATTEMPTS):
            entry_id = new_entry_id(self._now())
            payload_path = self.payload_path(entry_id)
            try:
                write_bytes_synced(payload_path, payload)
            except FileExistsError:
                continue
            except OSError:
                unlink_quiet(payload_path)
                raise
            break
        else:
            raise FileExistsError(f"Could not allocate a unique queue id in {self.queue_dir}")

        try:
            atomic_write_text(
                self.args_path(entry_id),
                encoded_args,
                encoding=ARGS_ENCODING,
                errors=ARGS_ERRORS,
                temp_path=self.temp_path(entry_id),
            )
        except BaseException:
            unlink_quiet(payload_path)
            raise

        LOGGER.info(
            "Queued %s (%s bytes)",
            entry_id,
            len(payload),
            extra={"category": "queue"},
        )
        return entry_id

    def list_ids(self) -> list[str]:
        if not self.queue_dir.is_dir():
            return []
        return sorted(path.stem for path in self.queue_dir.glob(f"*{PAYLOAD_SUFFIX}"))

    def list_orphans(self) -> list[str]:
        if not self.queue_dir.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.queue_dir.glob(f"*{ARGS_SUFFIX}")
            if not self.payload_path(path.stem).exists()
        )

    def read_args(self, entry_id: str) -> list[str]:
        try:
            text = self.args_path(entry_id).read_text(encoding=ARGS_ENCODING, errors=ARGS_ERRORS)
        except FileNotFoundError as exc:
            raise EntryNotFound(entry_id, "arguments file missing") from exc
        return _decode_args(text)

    def read_payload(self, entry_id: str) -> bytes:
        try:
            return self.payload_path(entry_id).read_bytes()
        except FileNotFoundError as exc:
            raise EntryNotFound(entry_id, "payload file missing") from exc

    def describe(self, entry_id: str) -> EntryInfo:
        try:
            stat = self.payload_path(entry_id).stat()
        except FileNotFoundError as exc:
            raise EntryNotFound(entry_id, "payload file missing") from exc
        return EntryInfo(
            entry_id=entry_id,
            queued_at=datetime.fromtimestamp(stat.st_mtime),
            size_bytes=stat.st_size,
            args=self.read_args(entry_id),
        )

    def delete_entry(self, entry_id: str) -> None:
        # The payload goes first: its absence is what marks the entry as sent.
        payload_path = self.payload_path(entry_id)
        try:
            payload_path.unlink()
        except FileNotFoundError as exc:
            raise EntryNotFound(entry_id, "payload file missing") from exc
        try:
            self.args_path(entry_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning(
                "Arguments file left behind for %s (%s); remove it with 'cleanup'",
                entry_id,
                exc,
                extra={"category": "queue"},
            )

    def remove_orphan(self, entry_id: str) -> bool:
        if self.payload_path(entry_id).exists():
            raise ValueError(f"Entry {entry_id} is still queued")
        removed = unlink_quiet(self.args_path(entry_id))
        if removed:
            LOGGER.info("Removed orphaned arguments file %s", entry_id, extra={"category": "queue"})
        return removed
