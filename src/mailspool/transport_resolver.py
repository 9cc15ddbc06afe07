"""Resolve the SMTP host/port an msmtp-style invocation will talk to.

Only the handful of directives needed to find the destination are read:
``defaults``, ``account <name>``, ``account default : <name>``, ``host`` and
``port``. Everything else in the file belongs to the transport.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 25
DEFAULT_ACCOUNT_NAME = "default"

_DEFAULT_ACCOUNT_RE = re.compile(r"^default\s*:\s*(\S+)")


class TransportConfigError(ValueError):
    """Raised when the transport configuration cannot yield a destination."""


class UnknownAccount(TransportConfigError):
    def __init__(self, account: str, config_path: Path | None = None) -> None:
        self.account = account
        where = f" in {config_path}" if config_path else ""
        super().__init__(f"Unknown account '{account}'{where}")


@dataclass(frozen=True)
class Destination:
    host: str
    port: int
    account: str

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class AccountSettings:
    host: str | None = None
    port: str | None = None


@dataclass
class TransportConfig:
    defaults: AccountSettings = field(default_factory=AccountSettings)
    accounts: dict[str, AccountSettings] = field(default_factory=dict)
    default_account: str | None = None


@dataclass(frozen=True)
class AccountArgs:
    account: str | None = None
    config_path: str | None = None


def parse_transport_config(text: str) -> TransportConfig:
    config = TransportConfig()
    current: AccountSettings | None = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        keyword = parts[0]
        rest = parts[1].strip() if len(parts) > 1 else ""

        if keyword == "defaults":
            current = config.defaults
        elif keyword == "account":
            match = _DEFAULT_ACCOUNT_RE.match(rest)
            if match:
                if config.default_account is None:
                    config.default_account = match.group(1)
                current = None
                continue
            name = rest.split(":", 1)[0].strip()
            current = config.accounts.setdefault(name, AccountSettings()) if name else None
        elif keyword == "host" and current is not None:
            current.host = rest
        elif keyword == "port" and current is not None:
            current.port = rest
    return config


def _take_option(
    args: Sequence[str], index: int, short: str, long: str
) -> tuple[str, int] | None:
    arg = args[index]
    if arg in (short, long):
        inline = ""
    elif arg.startswith(long + "="):
        inline = arg[len(long) + 1 :]
    elif arg.startswith(short) and not arg.startswith("--"):
        inline = arg[len(short) :]
    else:
        return None
    if inline:
        return inline, index + 1
    if index + 1 < len(args):
        return args[index + 1], index + 2
    return "", index + 1


def scan_account_args(args: Sequence[str]) -> AccountArgs:
    account: str | None = None
    config_path: str | None = None
    index = 0
    while index < len(args):
        if args[index] == "--":
            break
        taken = _take_option(args, index, "-a", "--account")
        if taken is not None:
            account = taken[0] or account
            index = taken[1]
            continue
        taken = _take_option(args, index, "-C", "--file")
        if taken is not None:
            config_path = taken[0] or config_path
            index = taken[1]
            continue
        index += 1
    return AccountArgs(account=account, config_path=config_path)


def _parse_port(raw: str, account: str) -> int:
    try:
        port = int(raw)
    except ValueError as exc:
        raise TransportConfigError(f"Account '{account}' has an invalid port: {raw!r}") from exc
    if not 0 < port < 65536:
        raise TransportConfigError(f"Account '{account}' has an invalid port: {raw!r}")
    return port


def resolve(
    args: Sequence[str],
    config_path: Path | str,
    account_override: str | None = None,
) -> Destination:
    account_args = scan_account_args(args)
    path = Path(account_args.config_path or config_path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TransportConfigError(f"Cannot read transport config {path}: {exc}") from exc

    config = parse_transport_config(text)
    account = (
        account_override
        or account_args.account
        or config.default_account
        or DEFAULT_ACCOUNT_NAME
    )
    settings = config.accounts.get(account)
    if settings is None:
        raise UnknownAccount(account, path)

    host = settings.host or config.defaults.host
    if not host:
        raise TransportConfigError(f"Account '{account}' has no host in {path}")
    port_raw = settings.port or config.defaults.port
    port = _parse_port(port_raw, account) if port_raw else DEFAULT_SMTP_PORT

    destination = Destination(host=host, port=port, account=account)
    LOGGER.debug(
        "Resolved account %s to %s",
        account,
        destination.key,
        extra={"category": "resolve"},
    )
    return destination
