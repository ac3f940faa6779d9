# -*- coding: utf-8 -*-
"""EpicVault package: an offline, encrypted epic/story tracker.

Modules:
    errors:        Error taxonomy shared by every layer.
    crypto:        Key derivation, password hashing, AEAD and TOTP helpers.
    fileio:        Crash-safe file writes (temp file + atomic rename).
    models:        Status, Story, Epic, Account and the per-user Document.
    store:         Encrypted envelope codec and the DocumentStore.
    logic:         Config management and operations composing store + crypto.
    nav:           Page variants and the NavigationStack.
    pages:         Per-page render/input/next-action dispatch table.
    dispatcher:    Session and the action state machine.
    logging_setup: Console and file logging configuration.
    ui:            Textual-based UI (screens, modals, app).
    theme.css:     Textual CSS theme (loaded by ui.py).
"""

__all__ = ["crypto", "dispatcher", "errors", "fileio", "logging_setup", "logic", "models", "nav", "pages", "store", "ui"]
