# -*- coding: utf-8 -*-
"""Encrypted per-account document store for EpicVault.

Layout::

    <data_dir>/databases/<account_id>.json

Each file is an envelope (JSON object, keys in this order)::

    {
      "format":     "epicvault/1",        # plaintext marker
      "account_id": "<uuid>",             # plaintext, matches the filename
      "username":   "<name>",             # plaintext, for the login list
      "indicator":  "<b64, 16 bytes>",    # fresh per write
      "payload":    "<b64 nonce||ct||tag>"
    }

The plaintext fields are bound into the AEAD as associated data, so any
change to them fails authentication just like a change to the payload.
There is no in-memory cache: every operation re-reads the file, and every
mutation goes through :meth:`DocumentStore.transact`.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import base64
import binascii
import json
import logging
import uuid

from . import fileio
from .crypto import (
    HKDF_INFO_DOCUMENT,
    HKDF_INFO_EXPORT,
    AuthenticationFailure,
    SecretInput,
    derive_key,
    hash_password,
    new_indicator,
    open_sealed,
    seal,
)
from .errors import (
    AlreadyExistsError,
    CorruptError,
    InvariantViolation,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WrongCredentialsError,
)
from .models import Account, Document

logger = logging.getLogger(__name__)

ENVELOPE_FORMAT = "epicvault/1"
DATABASES_DIRNAME = "databases"
FILE_SUFFIX = ".json"

Mutation = Callable[[Document], Document]


# ---------------------------------------------------------------------
# Envelope codec
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Envelope:
    """Parsed on-disk wrapper. ``payload`` is still sealed."""

    format: str
    account_id: str
    username: str
    indicator: bytes
    payload: bytes

    def aad(self) -> bytes:
        b64_indicator = base64.b64encode(self.indicator).decode("ascii")
        return "|".join((self.format, self.account_id, self.username, b64_indicator)).encode("utf-8")

    def to_bytes(self) -> bytes:
        data = {
            "format": self.format,
            "account_id": self.account_id,
            "username": self.username,
            "indicator": base64.b64encode(self.indicator).decode("ascii"),
            "payload": base64.b64encode(self.payload).decode("ascii"),
        }
        return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Envelope":
        """Parse an envelope; raise CorruptError if it is not ours."""
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptError("File is not a valid envelope") from exc
        if not isinstance(data, dict) or data.get("format") != ENVELOPE_FORMAT:
            raise CorruptError("Missing or unknown format indicator")
        try:
            account_id = str(data["account_id"])
            username = str(data["username"])
            indicator = base64.b64decode(data["indicator"], validate=True)
            payload = base64.b64decode(data["payload"], validate=True)
        except (KeyError, TypeError, binascii.Error) as exc:
            raise CorruptError("Envelope fields missing or malformed") from exc
        if not indicator:
            raise CorruptError("Empty indicator")
        return cls(ENVELOPE_FORMAT, account_id, username, indicator, payload)


def seal_envelope(
    account_id: str,
    username: str,
    body: Dict[str, Any],
    secret: SecretInput,
    info: bytes = HKDF_INFO_DOCUMENT,
) -> Envelope:
    """Serialize *body* and seal it under a key derived for *account_id*."""
    indicator = new_indicator()
    draft = Envelope(ENVELOPE_FORMAT, account_id, username, indicator, b"")
    plaintext = json.dumps(body, ensure_ascii=False).encode("utf-8")
    with derive_key(secret, account_id, info) as key:
        payload = seal(key, plaintext, draft.aad())
    return Envelope(ENVELOPE_FORMAT, account_id, username, indicator, payload)


def open_envelope(
    envelope: Envelope,
    secret: SecretInput,
    info: bytes = HKDF_INFO_DOCUMENT,
) -> Dict[str, Any]:
    """Decrypt an envelope's payload back into a JSON object."""
    with derive_key(secret, envelope.account_id, info) as key:
        try:
            plaintext = open_sealed(key, envelope.payload, envelope.aad())
        except AuthenticationFailure as exc:
            raise WrongCredentialsError() from exc
    try:
        body = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptError("Decrypted payload is not valid JSON") from exc
    if not isinstance(body, dict):
        raise CorruptError("Decrypted payload has unexpected shape")
    return body


def _canonical_id(account_id: Union[str, uuid.UUID]) -> str:
    """Normalise an account id; anything that is not a UUID cannot exist."""
    try:
        return str(uuid.UUID(str(account_id)))
    except ValueError:
        raise NotFoundError(f"No account with id {account_id!r}") from None


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class DocumentStore:
    """Read-modify-write access to one encrypted Document per account.

    Single process, single session per account: there is no cross-process
    locking, so two writers against the same file race and the last
    rename wins.
    """

    def __init__(self, data_dir: Union[str, Path] = ".") -> None:
        self._root = Path(data_dir).expanduser() / DATABASES_DIRNAME

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, account_id: Union[str, uuid.UUID]) -> Path:
        return self._root / f"{_canonical_id(account_id)}{FILE_SUFFIX}"

    def exists(self, account_id: Union[str, uuid.UUID]) -> bool:
        try:
            return self.path_for(account_id).is_file()
        except NotFoundError:
            return False

    # ---- raw envelope I/O ----

    def _load_envelope(self, account_id: str) -> Envelope:
        path = self.path_for(account_id)
        try:
            raw = fileio.read_bytes(path)
        except FileNotFoundError:
            raise NotFoundError(f"No account with id {account_id}") from None
        except OSError as exc:
            raise PersistenceError(f"Could not read {path.name}: {exc.strerror or exc}") from exc
        envelope = Envelope.from_bytes(raw)
        if envelope.account_id != _canonical_id(account_id):
            raise CorruptError("Envelope account id does not match its filename")
        return envelope

    def _store_envelope(self, envelope: Envelope) -> None:
        path = self.path_for(envelope.account_id)
        try:
            fileio.ensure_directory(self._root)
            fileio.atomic_write(path, envelope.to_bytes())
        except OSError as exc:
            raise PersistenceError(f"Could not write {path.name}: {exc.strerror or exc}") from exc

    # ---- document I/O ----

    def read(self, account_id: Union[str, uuid.UUID], secret: SecretInput) -> Document:
        """Load and decrypt the Document for *account_id*."""
        account_id = _canonical_id(account_id)
        envelope = self._load_envelope(account_id)
        body = open_envelope(envelope, secret)
        try:
            document = Document.from_dict(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptError("Decrypted document is malformed") from exc
        if document.account.id != account_id:
            raise CorruptError("Document belongs to a different account")
        document.check_integrity()
        logger.debug(
            "Read document account=%s epics=%d stories=%d",
            account_id,
            len(document.epics),
            len(document.stories),
        )
        return document

    def write(
        self,
        account_id: Union[str, uuid.UUID],
        secret: SecretInput,
        document: Document,
    ) -> None:
        """Seal and atomically persist *document*."""
        account_id = _canonical_id(account_id)
        if document.account.id != account_id:
            raise InvariantViolation("Refusing to write a document under another account id")
        document.check_integrity()
        envelope = seal_envelope(account_id, document.account.username, document.to_dict(), secret)
        self._store_envelope(envelope)
        logger.debug("Wrote document account=%s", account_id)

    def transact(
        self,
        account_id: Union[str, uuid.UUID],
        secret: SecretInput,
        mutate: Mutation,
    ) -> Document:
        """Read, apply *mutate*, write; return the new Document.

        This is the only path by which stored documents change. If
        *mutate* raises, nothing is written.
        """
        document = self.read(account_id, secret)
        updated = mutate(document)
        if not isinstance(updated, Document):
            raise InvariantViolation("Mutation must return a Document")
        self.write(account_id, secret, updated)
        return updated

    # ---- accounts ----

    def list_accounts(self) -> List[Tuple[str, str]]:
        """Return ``(account_id, username)`` for every readable envelope.

        Unreadable or malformed files are skipped with a warning.
        """
        if not self._root.is_dir():
            return []
        found: List[Tuple[str, str]] = []
        for path in sorted(self._root.glob(f"*{FILE_SUFFIX}")):
            if not path.is_file():
                continue
            try:
                envelope = Envelope.from_bytes(fileio.read_bytes(path))
                if _canonical_id(envelope.account_id) != path.stem:
                    raise CorruptError("filename mismatch")
            except (OSError, CorruptError, NotFoundError) as exc:
                logger.warning("Skipping unreadable database file %s: %s", path.name, exc)
                continue
            found.append((envelope.account_id, envelope.username))
        found.sort(key=lambda pair: pair[1].lower())
        return found

    def find_account(self, username: str) -> Optional[str]:
        """Resolve *username* to an account id by directory scan."""
        for account_id, name in self.list_accounts():
            if name == username:
                return account_id
        return None

    def register(self, username: str, secret: SecretInput) -> Document:
        """Create a new account with an empty Document."""
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username required")
        if not secret:
            raise ValidationError("Password required")
        if self.find_account(username) is not None:
            raise AlreadyExistsError(f"Username {username!r} is already registered")
        try:
            fileio.ensure_directory(self._root)
        except OSError as exc:
            raise PersistenceError(f"Could not create {self._root}: {exc.strerror or exc}") from exc

        account_id = str(uuid.uuid4())
        while self.path_for(account_id).exists():
            account_id = str(uuid.uuid4())

        account = Account(
            username=username,
            id=account_id,
            password_hash=hash_password(secret, account_id),
        )
        document = Document(account=account)
        self.write(account_id, secret, document)
        logger.info("Registered account id=%s", account_id)
        return document

    def rekey(
        self,
        account_id: Union[str, uuid.UUID],
        old_secret: SecretInput,
        new_secret: SecretInput,
    ) -> Document:
        """Re-encrypt the Document under *new_secret* in one atomic replace."""
        document = self.read(account_id, old_secret)
        document.account.password_hash = hash_password(new_secret, document.account.id)
        self.write(account_id, new_secret, document)
        logger.info("Re-keyed account id=%s", document.account.id)
        return document

    def delete(self, account_id: Union[str, uuid.UUID]) -> bool:
        """Remove the account file. Idempotent: a missing file is fine."""
        path = self.path_for(account_id)
        try:
            removed = fileio.delete_file(path)
        except OSError as exc:
            raise PersistenceError(f"Could not delete {path.name}: {exc.strerror or exc}") from exc
        logger.info("Deleted account id=%s existed=%s", _canonical_id(account_id), removed)
        return removed

    # ---- export ----

    def export(
        self,
        account_id: Union[str, uuid.UUID],
        secret: SecretInput,
        target: Union[str, Path],
        export_secret: Optional[SecretInput] = None,
    ) -> Path:
        """Write a snapshot of the Document to *target*.

        With *export_secret* the snapshot is sealed in an envelope keyed
        independently of the stored file; without it, plain JSON is written.
        The stored file is never modified.
        """
        target = Path(target).expanduser()
        self._check_export_target(target)
        document = self.read(account_id, secret)
        snapshot = export_snapshot(document)
        if export_secret:
            export_id = str(uuid.uuid4())
            envelope = seal_envelope(
                export_id, document.account.username, snapshot, export_secret, HKDF_INFO_EXPORT
            )
            data = envelope.to_bytes()
        else:
            data = json.dumps(snapshot, indent=2, ensure_ascii=False).encode("utf-8")
        try:
            fileio.ensure_directory(target.parent)
            fileio.atomic_write(target, data)
        except OSError as exc:
            raise PersistenceError(f"Could not write export {target}: {exc.strerror or exc}") from exc
        logger.info(
            "Exported account id=%s sealed=%s", document.account.id, bool(export_secret)
        )
        return target

    def _check_export_target(self, target: Path) -> None:
        """Exports may not land inside the databases directory."""
        resolved = target.resolve()
        root = self._root.resolve()
        if resolved == root or root in resolved.parents:
            raise ValidationError(f"Export target must be outside {self._root}")


def export_snapshot(document: Document) -> Dict[str, Any]:
    """Projection written by export; credentials are left out."""
    body = document.content()
    return {
        "account": {"username": document.account.username, "id": document.account.id},
        "epics": body["epics"],
        "stories": body["stories"],
    }


def read_export(path: Union[str, Path], export_secret: Optional[SecretInput] = None) -> Dict[str, Any]:
    """Load an export written by :meth:`DocumentStore.export`."""
    try:
        raw = fileio.read_bytes(path)
    except FileNotFoundError:
        raise NotFoundError(f"Export not found: {path}") from None
    except OSError as exc:
        raise PersistenceError(f"Could not read export {path}: {exc.strerror or exc}") from exc
    if export_secret:
        return open_envelope(Envelope.from_bytes(raw), export_secret, HKDF_INFO_EXPORT)
    try:
        body = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptError("Export is not valid JSON") from exc
    if not isinstance(body, dict):
        raise CorruptError("Export has unexpected shape")
    return body
