#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Application entrypoint for EpicVault.

This file is intentionally minimal. It configures logging, points the
document store at the data directory, and boots the Textual UI app.
Console records go through Textual's handler, never to the terminal the
UI draws on.
"""
from __future__ import annotations

import asyncio
import logging

from textual.logging import TextualHandler

from epicvault.logging_setup import setup_logging
from epicvault.logic import get_settings
from epicvault.store import DocumentStore
from epicvault.ui import EpicVaultApp

logger = logging.getLogger("epicvault.app")


def main() -> None:
    """Run the Textual application."""
    settings = get_settings()
    setup_logging(
        log_dir=settings.log_dir,
        console_level=getattr(logging, settings.log_level, logging.INFO),
        console_handler=TextualHandler(),
    )
    store = DocumentStore(settings.data_dir)
    logger.info("Starting EpicVault data_dir=%s", settings.data_dir)
    asyncio.run(EpicVaultApp(store).run_async())


if __name__ == "__main__":
    main()
