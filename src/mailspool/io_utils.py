from __future__ import annotations

import logging
import os
from pathlib import Path


LOGGER = logging.getLogger(__name__)


def atomic_write_text(
    path: Path,
    content: str,
    *,
    encoding: str = "utf-8",
    errors: str = "strict",
    temp_path: Path | None = None,
) -> None:
    """Write ``content`` to a temp file and rename it over ``path``.

    Readers never observe ``path`` with partial content. When ``temp_path`` is
    omitted a hidden per-process name next to ``path`` is used.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if temp_path is None:
        temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with temp_path.open("w", encoding=encoding, errors=errors, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass


def write_bytes_synced(path: Path, data: bytes) -> None:
    with path.open("xb") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())


def unlink_quiet(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        LOGGER.warning(
            "Failed to remove %s: %s",
            path,
            exc,
            extra={"category": "io"},
        )
        return False
    return True
