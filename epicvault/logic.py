# -*- coding: utf-8 -*-
"""Application logic that composes the store and crypto layers.

This module provides the public API used by the dispatcher. It does not
contain any Textual UI code. All side effects (document + config I/O) are
explicit and local; every document mutation is one ``store.transact``.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple
import json
import logging
import os

from .crypto import (
    SecretInput,
    new_totp_secret,
    totp_provisioning_uri,
    verify_password,
    verify_totp,
)
from .errors import AlreadyExistsError, ValidationError, WrongCredentialsError
from .models import Document, Epic, Status, Story
from .store import DocumentStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Config management (environment + JSON on disk)
# ---------------------------------------------------------------------

APP_NAME = "epicvault"
ENV_PREFIX = "EPICVAULT"

DEFAULT_CONFIG: Dict[str, object] = {
    "active_theme": "vt220_green",
    "ascii_art_enabled": True,
    # Simple default that renders safely in a Textual Static with markup=False
    "ascii_art": "EPIC//VAULT\n",
}


@dataclass(frozen=True)
class Settings:
    """Process settings read from ``EPICVAULT_*`` environment variables."""

    data_dir: Path
    log_level: str
    log_dir: Path


def _env(suffix: str, default: str) -> str:
    raw = os.environ.get(f"{ENV_PREFIX}_{suffix}")
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def get_settings() -> Settings:
    """Build Settings from the environment (no caching; cheap)."""
    data_dir = Path(_env("DATA_DIR", ".")).expanduser()
    return Settings(
        data_dir=data_dir,
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        log_dir=Path(_env("LOG_DIR", str(data_dir / "logs"))).expanduser(),
    )


def _config_dir() -> Path:
    """Return the config directory path for this platform."""
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~\\AppData\\Roaming"))
        return Path(base) / APP_NAME
    base = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(base) / APP_NAME


def _config_path() -> Path:
    return _config_dir() / "config.json"


def load_config() -> Dict[str, object]:
    """Load the merged configuration (defaults + file)."""
    path = _config_path()
    if not path.exists():
        save_config(DEFAULT_CONFIG)
        return dict(DEFAULT_CONFIG)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    merged = dict(DEFAULT_CONFIG)
    if isinstance(data, dict):
        merged.update(data)
    return merged


def save_config(cfg: Dict[str, object]) -> None:
    """Persist *cfg* to the JSON config file."""
    _config_dir().mkdir(parents=True, exist_ok=True)
    with _config_path().open("w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


# ---------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------

def require_text(value: Optional[str], field: str) -> str:
    """Strip *value*; reject empty input."""
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} required")
    return text


def _optional_text(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    return require_text(value, field)


def _optional_status(value: Optional[object]) -> Optional[Status]:
    if value is None or value == "":
        return None
    return Status.parse(value)


def _new_password(password: Optional[str], confirm: Optional[str]) -> str:
    if not password:
        raise ValidationError("Password required")
    if password != confirm:
        raise ValidationError("Passwords do not match")
    return password


# ---------------------------------------------------------------------
# Auth and account management
# ---------------------------------------------------------------------

def register_user(store: DocumentStore, username: str, password: str, confirm: str) -> Document:
    """Register a new account and write its empty Document."""
    username = require_text(username, "Username")
    password = _new_password(password, confirm)
    return store.register(username, password)


def login_user(
    store: DocumentStore,
    username: str,
    password: SecretInput,
    code: Optional[str] = None,
) -> Document:
    """Authenticate and return the account's Document.

    Every failure (unknown user, bad password, bad or missing code) is the
    same WrongCredentialsError.
    """
    account_id = store.find_account((username or "").strip())
    if account_id is None or not password:
        logger.warning("Login failed (unknown user or empty password)")
        raise WrongCredentialsError()
    try:
        document = store.read(account_id, password)
    except WrongCredentialsError:
        logger.warning("Login failed for account id=%s", account_id)
        raise
    if not verify_password(document.account.password_hash, password):
        logger.warning("Login failed for account id=%s (hash mismatch)", account_id)
        raise WrongCredentialsError()
    if document.account.totp_secret and not verify_totp(document.account.totp_secret, code or ""):
        logger.warning("Login failed for account id=%s (second factor)", account_id)
        raise WrongCredentialsError()
    logger.info("Login account id=%s", account_id)
    return document


def verify_credentials(store: DocumentStore, account_id: str, password: SecretInput) -> Document:
    """Re-check *password* for a sensitive operation on an open session."""
    if not password:
        raise WrongCredentialsError()
    document = store.read(account_id, password)
    if not verify_password(document.account.password_hash, password):
        raise WrongCredentialsError()
    return document


def change_password(
    store: DocumentStore,
    account_id: str,
    current_password: SecretInput,
    new_password: str,
    confirm: str,
) -> Document:
    """Re-encrypt the Document under a new password (one atomic replace)."""
    new_password = _new_password(new_password, confirm)
    verify_credentials(store, account_id, current_password)
    return store.rekey(account_id, current_password, new_password)


def change_username(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    new_username: str,
) -> Document:
    """Rename the account; its id (and so its file and key) are unchanged."""
    new_username = require_text(new_username, "Username")
    owner = store.find_account(new_username)
    if owner is not None and owner != account_id:
        raise AlreadyExistsError(f"Username {new_username!r} is already registered")

    def mutate(doc: Document) -> Document:
        doc.account.username = new_username
        return doc

    return store.transact(account_id, secret, mutate)


def begin_totp(store: DocumentStore, account_id: str, secret: SecretInput) -> Tuple[str, str]:
    """Generate a candidate TOTP secret; return ``(secret, provisioning_uri)``.

    Nothing is stored until :func:`confirm_totp` sees a valid code.
    """
    document = store.read(account_id, secret)
    if document.account.totp_enabled:
        raise ValidationError("Two-factor authentication is already enabled")
    totp_secret = new_totp_secret()
    return totp_secret, totp_provisioning_uri(totp_secret, document.account.username)


def confirm_totp(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    totp_secret: str,
    code: str,
) -> Document:
    """Store *totp_secret* once the user proves their authenticator works."""
    if not verify_totp(totp_secret, code):
        raise WrongCredentialsError()

    def mutate(doc: Document) -> Document:
        doc.account.totp_secret = totp_secret
        return doc

    document = store.transact(account_id, secret, mutate)
    logger.info("Enabled second factor for account id=%s", account_id)
    return document


def disable_totp(store: DocumentStore, account_id: str, secret: SecretInput, code: str) -> Document:
    """Remove the second factor; requires a current valid code."""
    document = store.read(account_id, secret)
    if not document.account.totp_enabled:
        raise ValidationError("Two-factor authentication is not enabled")
    if not verify_totp(document.account.totp_secret or "", code):
        raise WrongCredentialsError()

    def mutate(doc: Document) -> Document:
        doc.account.totp_secret = None
        return doc

    document = store.transact(account_id, secret, mutate)
    logger.info("Disabled second factor for account id=%s", account_id)
    return document


def export_document(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    target: str,
    export_secret: Optional[str] = None,
) -> Path:
    """Write a snapshot to *target*, sealed if *export_secret* is given."""
    target = require_text(target, "Export path")
    return store.export(account_id, secret, target, export_secret or None)


def delete_account(store: DocumentStore, account_id: str) -> bool:
    """Remove the account file; idempotent."""
    return store.delete(account_id)


# ---------------------------------------------------------------------
# Epics and stories
# ---------------------------------------------------------------------

def create_epic(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    title: str,
    description: str = "",
) -> Tuple[Document, Epic]:
    """Create an Open epic with no stories; return the new Document and the epic."""
    epic = Epic.new(require_text(title, "Title"), (description or "").strip())
    document = store.transact(account_id, secret, lambda doc: doc.insert_epic(epic))
    logger.debug("Created epic id=%s", epic.id)
    return document, epic


def update_epic(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    epic_id: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[object] = None,
) -> Tuple[Document, Epic]:
    """Edit an epic's fields; ``None`` leaves a field unchanged."""
    new_title = _optional_text(title, "Title")
    new_status = _optional_status(status)
    document = store.transact(
        account_id,
        secret,
        lambda doc: doc.update_epic(
            epic_id, title=new_title, description=description, status=new_status
        ),
    )
    return document, document.get_epic(epic_id)


def delete_epic(store: DocumentStore, account_id: str, secret: SecretInput, epic_id: str) -> Document:
    """Delete an epic and all of its stories in a single write."""
    document = store.transact(account_id, secret, lambda doc: doc.remove_epic(epic_id))
    logger.debug("Deleted epic id=%s", epic_id)
    return document


def create_story(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    epic_id: str,
    title: str,
    description: str = "",
) -> Tuple[Document, Story]:
    """Create an Open story appended to *epic_id*."""
    story = Story.new(require_text(title, "Title"), (description or "").strip())
    document = store.transact(account_id, secret, lambda doc: doc.insert_story(epic_id, story))
    logger.debug("Created story id=%s epic=%s", story.id, epic_id)
    return document, story


def update_story(
    store: DocumentStore,
    account_id: str,
    secret: SecretInput,
    story_id: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[object] = None,
) -> Tuple[Document, Story]:
    new_title = _optional_text(title, "Title")
    new_status = _optional_status(status)
    document = store.transact(
        account_id,
        secret,
        lambda doc: doc.update_story(
            story_id, title=new_title, description=description, status=new_status
        ),
    )
    return document, document.get_story(story_id)


def delete_story(store: DocumentStore, account_id: str, secret: SecretInput, story_id: str) -> Document:
    return store.transact(account_id, secret, lambda doc: doc.remove_story(story_id))
