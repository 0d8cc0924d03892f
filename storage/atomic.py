"""
Atomic file writes for account state and exported certificate bundles.

Pattern:
  1. Write to a temporary file in the destination directory
  2. fsync
  3. os.replace() onto the destination (atomic on POSIX)

A crash mid-write therefore never leaves a truncated account.json behind,
which matters because the presence of that file alone decides whether a new
ACME account gets registered.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, content: bytes, mode: Optional[int] = None) -> None:
    """
    Atomically write *content* to *path*.

    If *mode* is given the temp file is chmod-ed before the rename, so the
    destination never exists with looser permissions.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_write_text(
    path: Path,
    content: str,
    encoding: str = "utf-8",
    mode: Optional[int] = None,
) -> None:
    """Text variant of :func:`atomic_write_bytes`."""
    atomic_write_bytes(path, content.encode(encoding), mode=mode)
