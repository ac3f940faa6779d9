# -*- coding: utf-8 -*-
"""Error taxonomy for EpicVault.

Every user-facing failure is an :class:`EpicVaultError`. The dispatcher
recovers these at its boundary; anything else (including
:class:`InvariantViolation`) is a bug and propagates.
"""
from __future__ import annotations


class EpicVaultError(Exception):
    """Base class for recoverable, user-facing errors."""

    kind = "error"


class NotFoundError(EpicVaultError):
    """Referenced account, epic, story or file does not exist."""

    kind = "not_found"


class AlreadyExistsError(EpicVaultError):
    """Registration or rename collided with an existing username."""

    kind = "already_exists"


class WrongCredentialsError(EpicVaultError):
    """Password or one-time code mismatch.

    The message is deliberately generic: callers must not learn which
    factor failed.
    """

    kind = "wrong_credentials"

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class CorruptError(EpicVaultError):
    """The file is not a well-formed envelope; needs manual recovery."""

    kind = "corrupt"


class PersistenceError(EpicVaultError):
    """Underlying storage failure. The prior on-disk state is intact."""

    kind = "io"


class ValidationError(EpicVaultError, ValueError):
    """Malformed user input, rejected before any store call."""

    kind = "validation"


class InvariantViolation(RuntimeError):
    """Internal consistency broken (e.g. an epic points at a missing story)."""
