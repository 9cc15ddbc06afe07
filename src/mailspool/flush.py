from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .config import SpoolConfig
from .locking import AdvisoryLock
from .queue_store import EntryNotFound, QueueStore
from .transport import CommandTransport, Transport

LOGGER = logging.getLogger(__name__)


class FlushOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    LOCKED = "locked"
    VANISHED = "vanished"


@dataclass
class FlushReport:
    sent: int = 0
    failed: int = 0
    locked: int = 0
    vanished: int = 0
    remaining: list[str] = field(default_factory=list)

    def record(self, outcome: FlushOutcome) -> None:
        if outcome is FlushOutcome.SENT:
            self.sent += 1
        elif outcome is FlushOutcome.FAILED:
            self.failed += 1
        elif outcome is FlushOutcome.LOCKED:
            self.locked += 1
        else:
            self.vanished += 1


class Flusher:
    """Delivers queued entries one at a time under the per-entry lock."""

    def __init__(self, store: QueueStore, transport: Transport) -> None:
        self._store = store
        self._transport = transport

    @property
    def store(self) -> QueueStore:
        return self._store

    def flush(self, entry_id: str) -> FlushOutcome:
        if not self._store.exists(entry_id):
            raise EntryNotFound(entry_id)

        lock = AdvisoryLock(self._store.args_path(entry_id))
        try:
            acquired = lock.try_acquire()
        except FileNotFoundError:
            LOGGER.debug("%s vanished before it could be locked", entry_id, extra={"category": "flush"})
            return FlushOutcome.VANISHED
        if not acquired:
            LOGGER.info(
                "%s is being sent by another process; skipping",
                entry_id,
                extra={"category": "flush"},
            )
            return FlushOutcome.LOCKED
        try:
            return self._deliver_locked(entry_id)
        finally:
            lock.release()

    def _deliver_locked(self, entry_id: str) -> FlushOutcome:
        try:
            args = self._store.read_args(entry_id)
            payload = self._store.read_payload(entry_id)
        except EntryNotFound:
            LOGGER.debug("%s was sent by another process", entry_id, extra={"category": "flush"})
            return FlushOutcome.VANISHED
        except OSError as exc:
            LOGGER.warning(
                "Cannot read %s, left queued: %s",
                entry_id,
                exc,
                extra={"category": "flush"},
            )
            return FlushOutcome.FAILED

        try:
            result = self._transport.deliver(args, payload)
        except (OSError, subprocess.SubprocessError) as exc:
            LOGGER.info(
                "Transport could not run for %s, left queued: %s",
                entry_id,
                exc,
                extra={"category": "flush"},
            )
            return FlushOutcome.FAILED

        if not result.ok:
            LOGGER.info(
                "Transport exited with status %s for %s, left queued: %s",
                result.returncode,
                entry_id,
                result.detail or "no details",
                extra={"category": "flush"},
            )
            return FlushOutcome.FAILED

        try:
            self._store.delete_entry(entry_id)
        except EntryNotFound:
            LOGGER.warning(
                "%s was removed while being sent",
                entry_id,
                extra={"category": "flush"},
            )
        LOGGER.info("Sent %s", entry_id, extra={"category": "flush"})
        return FlushOutcome.SENT

    def flush_all(self, entry_ids: Iterable[str] | None = None) -> FlushReport:
        report = FlushReport()
        targets = self._store.list_ids() if entry_ids is None else list(entry_ids)
        for entry_id in targets:
            try:
                outcome = self.flush(entry_id)
            except EntryNotFound:
                LOGGER.debug("%s disappeared before flush", entry_id, extra={"category": "flush"})
                outcome = FlushOutcome.VANISHED
            report.record(outcome)
        report.remaining = self._store.list_ids()
        LOGGER.info(
            "Flush finished: sent=%s failed=%s locked=%s remaining=%s",
            report.sent,
            report.failed,
            report.locked,
            len(report.remaining),
            extra={"category": "flush"},
        )
        return report


def build_flusher(config: SpoolConfig, transport: Transport | None = None) -> Flusher:
    return Flusher(
        QueueStore(config.queue_path),
        transport or CommandTransport(config.transport_command),
    )
