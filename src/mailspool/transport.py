from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    returncode: int
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Transport:
    def deliver(self, args: Sequence[str], payload: bytes) -> DeliveryResult:
        raise NotImplementedError()


@dataclass
class CommandTransport(Transport):
    """Runs ``command`` with the stored arguments and the mail on stdin.

    Spawn failures surface as ``OSError``; the caller decides what a failed
    delivery means.
    """

    command: str

    def build_argv(self, args: Sequence[str]) -> list[str]:
        return [self.command, *args]

    def deliver(self, args: Sequence[str], payload: bytes) -> DeliveryResult:
        argv = self.build_argv(args)
        LOGGER.debug("Running transport: %s", " ".join(argv), extra={"category": "transport"})
        completed = subprocess.run(
            argv,
            input=payload,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            check=False,
        )
        detail = completed.stderr.decode("utf-8", errors="replace").strip() if completed.stderr else ""
        return DeliveryResult(returncode=completed.returncode, detail=detail)
