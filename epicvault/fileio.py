# -*- coding: utf-8 -*-
"""Crash-safe file primitives used by the document store.

Writes go to a temporary file in the target's directory, are fsynced, and
are then moved over the target with :func:`os.replace`. A crash or error at
any point before the rename leaves the previous file untouched.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TMP_SUFFIX = ".tmp"


def ensure_directory(path: PathLike) -> Path:
    """Create *path* (and parents) if missing; idempotent."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _fsync_directory(directory: Path) -> None:
    # Not every platform lets you open a directory (Windows); the rename is
    # still atomic there, only its durability is weaker.
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync on directory %s not supported", directory)
    finally:
        os.close(fd)


def atomic_write(path: PathLike, data: bytes) -> None:
    """Replace *path* with exactly *data*.

    Raises:
        OSError: if writing or renaming fails. The target keeps its prior
            contents in that case and the temporary file is removed.
    """
    target = Path(path)
    directory = target.parent
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=TMP_SUFFIX, dir=str(directory)
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise
    _fsync_directory(directory)
    logger.debug("Wrote %d bytes to %s", len(data), target)


def read_bytes(path: PathLike) -> bytes:
    """Read a whole file. A missing file raises FileNotFoundError."""
    return Path(path).read_bytes()


def delete_file(path: PathLike) -> bool:
    """Remove *path*; return False if it was already gone."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    logger.debug("Deleted %s", path)
    return True
