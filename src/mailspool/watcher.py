"""Background retry loop for queued mail.

One watcher runs per spool, guarded by an advisory lock held for the life of
the process. It sleeps, probes the destinations of everything still queued
(once per host:port per round), flushes what is reachable and exits as soon as
the queue is observed empty. The frontend spawns a new one whenever an
immediate delivery does not drain the queue.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

from .config import SpoolConfig
from .flush import FlushOutcome, Flusher
from .locking import AdvisoryLock
from .prober import ConnectivityCache, Probe, is_reachable
from .queue_store import EntryNotFound, QueueStore
from .transport_resolver import Destination, TransportConfigError, resolve

LOGGER = logging.getLogger(__name__)

ResolveDestination = Callable[[Sequence[str]], Destination]


class WatcherState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    DRAINING = "draining"
    EXITING = "exiting"


@dataclass
class RoundReport:
    probed: dict[str, bool] = field(default_factory=dict)
    outcomes: dict[str, FlushOutcome] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)


class Watcher:
    def __init__(
        self,
        store: QueueStore,
        flusher: Flusher,
        resolve_destination: ResolveDestination,
        probe: Probe,
        *,
        lock_path: Path,
        poll_interval: float,
        probe_timeout: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._flusher = flusher
        self._resolve_destination = resolve_destination
        self._probe = probe
        self._lock_path = lock_path
        self._poll_interval = poll_interval
        self._probe_timeout = probe_timeout
        self._sleep = sleep
        self.state = WatcherState.STARTING
        self.rounds = 0

    def _set_state(self, state: WatcherState) -> None:
        LOGGER.debug("Watcher %s -> %s", self.state.value, state.value, extra={"category": "watcher"})
        self.state = state

    def run(self) -> WatcherState:
        lock = AdvisoryLock(self._lock_path, create=True)
        with lock.held() as acquired:
            if not acquired:
                LOGGER.info(
                    "Another watcher holds %s; exiting",
                    self._lock_path,
                    extra={"category": "watcher"},
                )
                self._set_state(WatcherState.EXITING)
                return self.state

            LOGGER.info(
                "Watcher started (pid %s, interval %ss)",
                os.getpid(),
                self._poll_interval,
                extra={"category": "watcher"},
            )
            self._set_state(WatcherState.POLLING)
            while self._store.list_ids():
                self._sleep(self._poll_interval)
                self.poll_once()

            self._set_state(WatcherState.DRAINING)
            LOGGER.info(
                "Queue empty after %s rounds; watcher exiting",
                self.rounds,
                extra={"category": "watcher"},
            )
        self._set_state(WatcherState.EXITING)
        return self.state

    def poll_once(self) -> RoundReport:
        report = RoundReport()
        cache = ConnectivityCache(self._probe, self._probe_timeout)
        for entry_id in self._store.list_ids():
            try:
                args = self._store.read_args(entry_id)
            except EntryNotFound:
                continue
            except OSError as exc:
                LOGGER.warning(
                    "Cannot read arguments of %s: %s",
                    entry_id,
                    exc,
                    extra={"category": "watcher"},
                )
                report.unresolved.append(entry_id)
                continue
            try:
                destination = self._resolve_destination(args)
            except TransportConfigError as exc:
                LOGGER.warning(
                    "Cannot resolve destination for %s: %s",
                    entry_id,
                    exc,
                    extra={"category": "watcher"},
                )
                report.unresolved.append(entry_id)
                continue
            if not cache.is_reachable(destination):
                continue
            try:
                report.outcomes[entry_id] = self._flusher.flush(entry_id)
            except EntryNotFound:
                report.outcomes[entry_id] = FlushOutcome.VANISHED
        report.probed = cache.results
        self.rounds += 1
        LOGGER.debug(
            "Round %s: probed=%s flushed=%s",
            self.rounds,
            report.probed,
            len(report.outcomes),
            extra={"category": "watcher"},
        )
        return report


def build_watcher(
    config: SpoolConfig,
    flusher: Flusher,
    *,
    probe: Probe = is_reachable,
    sleep: Callable[[float], None] = time.sleep,
) -> Watcher:
    def resolve_destination(args: Sequence[str]) -> Destination:
        return resolve(args, config.transport_config)

    return Watcher(
        flusher.store,
        flusher,
        resolve_destination,
        probe,
        lock_path=config.watcher_lock_path,
        poll_interval=config.poll_interval_seconds,
        probe_timeout=config.watcher_probe_timeout_seconds,
        sleep=sleep,
    )


def spawn_watcher(*, detach: bool = True) -> int:
    """Start ``mailspool watch`` in a child process and return its pid."""
    package_root = str(Path(__file__).resolve().parent.parent)
    env = dict(os.environ)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = package_root + (os.pathsep + existing if existing else "")
    process = subprocess.Popen(
        [sys.executable, "-m", "mailspool.cli", "watch"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        start_new_session=detach,
        env=env,
    )
    LOGGER.info("Spawned watcher pid %s", process.pid, extra={"category": "watcher"})
    return process.pid
