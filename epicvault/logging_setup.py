# -*- coding: utf-8 -*-
"""Logging configuration for the EpicVault process."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union
import logging
import sys

LOG_FILENAME = "epicvault.log"


class _ConsoleNoiseFilter(logging.Filter):
    """Keep our own records; show third-party ones only at ERROR+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "epicvault" or record.name.startswith("epicvault."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: Union[str, Path] = "logs",
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
    console_handler: Optional[logging.Handler] = None,
) -> Path:
    """Configure the root logger with a console and a file handler.

    *console_handler* replaces the default stderr stream handler; a
    full-screen UI that draws on stderr must pass its own.

    Call this ONCE, before the first log record. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = console_handler if console_handler is not None else logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
