from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from .config import SpoolConfig
from .flush import FlushReport, Flusher
from .prober import Probe, is_reachable
from .queue_store import QueueStore
from .transport_resolver import Destination, TransportConfigError, resolve
from .watcher import ResolveDestination, spawn_watcher

LOGGER = logging.getLogger(__name__)

DIRECTIVE_PREFIX = "--spool-"

_DIRECTIVE_FLAGS = {
    "--spool-queue": "force_queue",
    "--spool-fork": "fork",
    "--spool-no-watcher": "no_watcher",
}


class UnknownDirective(ValueError):
    """Raised for a ``--spool-`` argument that is not a known directive."""


@dataclass(frozen=True)
class Directives:
    force_queue: bool = False
    fork: bool = False
    no_watcher: bool = False


class SubmitStatus(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    DETACHED = "detached"


@dataclass(frozen=True)
class SubmitResult:
    entry_id: str
    status: SubmitStatus
    report: FlushReport | None = None
    watcher_started: bool = False


def split_directives(argv: Sequence[str]) -> tuple[Directives, list[str]]:
    flags: dict[str, bool] = {}
    forwarded: list[str] = []
    for arg in argv:
        if not arg.startswith(DIRECTIVE_PREFIX):
            forwarded.append(arg)
            continue
        name = _DIRECTIVE_FLAGS.get(arg)
        if name is None:
            raise UnknownDirective(f"Unknown directive: {arg}")
        flags[name] = True
    return Directives(**flags), forwarded


class Submitter:
    def __init__(
        self,
        store: QueueStore,
        flusher: Flusher,
        resolve_destination: ResolveDestination,
        probe: Probe,
        *,
        probe_timeout: float,
        launch_watcher: Callable[[bool], object],
        fork: Callable[[], int] | None = getattr(os, "fork", None),
    ) -> None:
        self._store = store
        self._flusher = flusher
        self._resolve_destination = resolve_destination
        self._probe = probe
        self._probe_timeout = probe_timeout
        self._launch_watcher = launch_watcher
        self._fork = fork

    def submit(
        self,
        payload: bytes,
        args: Sequence[str],
        directives: Directives = Directives(),
    ) -> SubmitResult:
        entry_id = self._store.enqueue(payload, args)

        if directives.force_queue:
            LOGGER.info("%s queued on request", entry_id, extra={"category": "submit"})
            return self._leave_queued(entry_id, directives)

        try:
            destination = self._resolve_destination(args)
        except TransportConfigError as exc:
            LOGGER.error(
                "%s stays queued; destination unresolved: %s",
                entry_id,
                exc,
                extra={"category": "submit"},
            )
            raise
        if not self._probe(destination.host, destination.port, self._probe_timeout):
            LOGGER.info(
                "%s is unreachable; %s stays queued",
                destination.key,
                entry_id,
                extra={"category": "submit"},
            )
            return self._leave_queued(entry_id, directives)

        if directives.fork and self._run_detached(lambda: self._deliver(entry_id, directives)):
            return SubmitResult(entry_id=entry_id, status=SubmitStatus.DETACHED)
        return self._deliver(entry_id, directives)

    def _deliver(self, entry_id: str, directives: Directives) -> SubmitResult:
        report = self._flusher.flush_all()
        watcher_started = False
        if report.remaining:
            watcher_started = self._start_watcher(directives)
        status = SubmitStatus.QUEUED if entry_id in report.remaining else SubmitStatus.SENT
        return SubmitResult(
            entry_id=entry_id,
            status=status,
            report=report,
            watcher_started=watcher_started,
        )

    def _leave_queued(self, entry_id: str, directives: Directives) -> SubmitResult:
        return SubmitResult(
            entry_id=entry_id,
            status=SubmitStatus.QUEUED,
            watcher_started=self._start_watcher(directives),
        )

    def _start_watcher(self, directives: Directives) -> bool:
        if directives.no_watcher:
            LOGGER.info("Watcher start suppressed", extra={"category": "submit"})
            return False
        try:
            self._launch_watcher(directives.fork)
        except OSError as exc:
            LOGGER.warning("Failed to start watcher: %s", exc, extra={"category": "submit"})
            return False
        return True

    def _run_detached(self, work: Callable[[], object]) -> bool:
        if self._fork is None:
            LOGGER.info("Fork unsupported here; delivering in the foreground", extra={"category": "submit"})
            return False
        pid = self._fork()
        if pid > 0:
            LOGGER.info("Delivery continues in background pid %s", pid, extra={"category": "submit"})
            return True

        exit_code = 0
        try:
            if hasattr(os, "setsid"):
                os.setsid()
            work()
        except Exception:
            LOGGER.exception("Background delivery failed", extra={"category": "submit"})
            exit_code = 1
        finally:
            logging.shutdown()
            os._exit(exit_code)


def build_submitter(
    config: SpoolConfig,
    flusher: Flusher,
    *,
    probe: Probe = is_reachable,
    launch_watcher: Callable[[bool], object] | None = None,
) -> Submitter:
    def resolve_destination(args: Sequence[str]) -> Destination:
        return resolve(args, config.transport_config)

    def default_launch(detach: bool) -> int:
        return spawn_watcher(detach=detach)

    return Submitter(
        flusher.store,
        flusher,
        resolve_destination,
        probe,
        probe_timeout=config.immediate_probe_timeout_seconds,
        launch_watcher=launch_watcher or default_launch,
    )
