"""Non-blocking advisory file locks shared between spooler processes."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

LOGGER = logging.getLogger(__name__)


def _try_lock_handle(handle: IO[bytes]) -> bool:
    if sys.platform == "win32":
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _unlock_handle(handle: IO[bytes]) -> None:
    if sys.platform == "win32":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class AdvisoryLock:
    """Exclusive lock on ``path``: try-acquire, use, release on every path.

    With ``create=False`` the file must already exist; ``try_acquire`` then
    raises ``FileNotFoundError`` instead of recreating a deleted file.
    Acquisition never blocks: a held lock makes ``try_acquire`` return False.
    """

    def __init__(self, path: Path, *, create: bool = False) -> None:
        self.path = path
        self._create = create
        self._handle: IO[bytes] | None = None

    @property
    def acquired(self) -> bool:
        return self._handle is not None

    def _open(self) -> IO[bytes]:
        if not self._create:
            return self.path.open("rb")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)
        return os.fdopen(fd, "r+b")

    def try_acquire(self) -> bool:
        if self._handle is not None:
            return True
        handle = self._open()
        if not _try_lock_handle(handle):
            handle.close()
            LOGGER.debug("Lock busy: %s", self.path, extra={"category": "lock"})
            return False
        self._handle = handle
        LOGGER.debug("Lock acquired: %s", self.path, extra={"category": "lock"})
        return True

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            _unlock_handle(handle)
        except OSError as exc:
            LOGGER.warning(
                "Failed to unlock %s: %s",
                self.path,
                exc,
                extra={"category": "lock"},
            )
        finally:
            handle.close()
        LOGGER.debug("Lock released: %s", self.path, extra={"category": "lock"})

    @contextmanager
    def held(self) -> Iterator[bool]:
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
