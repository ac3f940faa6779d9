# -*- coding: utf-8 -*-
"""Crypto helpers and key handling for EpicVault.

This module encapsulates *stateless* cryptographic helpers and the
wipeable secret container. It does **not** perform any file I/O.

Two independent transforms are derived from the same password:

* the stored ``password_hash`` (Argon2id, encoded PHC string) used only to
  verify credentials, and
* the document encryption key (Argon2id raw output over a domain-tagged
  SHA3-512 prehash, expanded with HKDF under a purpose-specific info tag).

Leaking one does not yield the other.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
import base64
import secrets
import time
import uuid

from argon2.exceptions import InvalidHashError, VerificationError
from argon2.low_level import Type, hash_secret, hash_secret_raw, verify_secret
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

from .errors import CorruptError

SecretInput = Union[str, bytes, bytearray]

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class Argon2Params:
    """Argon2id cost parameters (memory in KiB)."""

    time_cost: int
    memory_cost: int
    parallelism: int
    hash_len: int


KDF_PARAMS = Argon2Params(time_cost=8, memory_cost=65_536, parallelism=1, hash_len=64)
HASH_PARAMS = Argon2Params(time_cost=8, memory_cost=65_536, parallelism=1, hash_len=32)

KEY_LEN = 32
NONCE_LEN = 12
INDICATOR_LEN = 16

KDF_DOMAIN = b"epicvault/kdf"
HKDF_INFO_DOCUMENT = b"epicvault/document-key"
HKDF_INFO_EXPORT = b"epicvault/export-key"

TOTP_ISSUER = "EpicVault"
TOTP_DIGITS = 6
TOTP_STEP = 30
TOTP_SECRET_LEN = 20


class AuthenticationFailure(Exception):
    """AEAD open failed: wrong key, tampering or truncation."""


# ---------------------------------------------------------------------
# Secret container
# ---------------------------------------------------------------------

class SecretBytes:
    """Mutable byte buffer that can be zeroed once it is no longer needed.

    Use as a context manager to guarantee the wipe::

        with derive_key(password, account_id) as key:
            ...
    """

    __slots__ = ("_buf",)

    def __init__(self, value: SecretInput) -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._buf = bytearray(value)

    @property
    def value(self) -> bytearray:
        return self._buf

    def wipe(self) -> None:
        """Overwrite the buffer with zeros and drop its length."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()

    @property
    def wiped(self) -> bool:
        return not self._buf

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> bytearray:
        return self._buf

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "SecretBytes(<redacted>)"


def _as_bytes(secret: SecretInput) -> bytearray:
    if isinstance(secret, str):
        return bytearray(secret.encode("utf-8"))
    return bytearray(secret)


def _zero(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


def id_salt(account_id: Union[uuid.UUID, str]) -> bytes:
    """Return the 16 raw bytes of an account UUID, used as salt."""
    if not isinstance(account_id, uuid.UUID):
        account_id = uuid.UUID(str(account_id))
    return account_id.bytes


# ---------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------

def hkdf_derive(key_material: bytes, info: bytes, length: int = KEY_LEN) -> bytes:
    """Derive a subkey from key material using HKDF-SHA256."""
    hk = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info)
    return hk.derive(bytes(key_material))


def derive_key(
    secret: SecretInput,
    account_id: Union[uuid.UUID, str],
    info: bytes = HKDF_INFO_DOCUMENT,
) -> SecretBytes:
    """Derive the symmetric key for *account_id* from *secret*.

    Deterministic: the account id is the only salt. The returned buffer
    should be wiped by the caller (use it as a context manager).
    """
    params = KDF_PARAMS
    salt = id_salt(account_id)
    material = _as_bytes(secret)
    digest = hashes.Hash(hashes.SHA3_512())
    digest.update(KDF_DOMAIN)
    digest.update(bytes(material))
    digest.update(str(uuid.UUID(bytes=salt)).encode("ascii"))
    prehash = bytearray(digest.finalize())
    _zero(material)
    raw = bytearray(
        hash_secret_raw(
            secret=bytes(prehash),
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.hash_len,
            type=Type.ID,
        )
    )
    _zero(prehash)
    try:
        return SecretBytes(hkdf_derive(raw, info, KEY_LEN))
    finally:
        _zero(raw)


# ---------------------------------------------------------------------
# Password hashing (verification only; never used as a key)
# ---------------------------------------------------------------------

def hash_password(password: SecretInput, account_id: Union[uuid.UUID, str]) -> str:
    """Return an encoded Argon2id hash of *password* salted with the account id."""
    params = HASH_PARAMS
    material = _as_bytes(password)
    try:
        encoded = hash_secret(
            secret=bytes(material),
            salt=id_salt(account_id),
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.hash_len,
            type=Type.ID,
        )
    finally:
        _zero(material)
    return encoded.decode("ascii")


def verify_password(password_hash: str, password: SecretInput) -> bool:
    """Return True if *password* matches *password_hash*."""
    material = _as_bytes(password)
    try:
        return verify_secret(password_hash.encode("ascii"), bytes(material), Type.ID)
    except InvalidHashError as exc:
        raise CorruptError("Stored password hash is malformed") from exc
    except VerificationError:
        return False
    finally:
        _zero(material)


# ---------------------------------------------------------------------
# AEAD (AES-256-GCM)
# ---------------------------------------------------------------------

def seal(key: Union[bytes, bytearray], plaintext: bytes, aad: Optional[bytes] = None) -> bytes:
    """Encrypt *plaintext*; return ``nonce || ciphertext || tag``."""
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires a 32-byte key")
    nonce = secrets.token_bytes(NONCE_LEN)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def open_sealed(key: Union[bytes, bytearray], sealed: bytes, aad: Optional[bytes] = None) -> bytes:
    """Decrypt output of :func:`seal`; raise AuthenticationFailure on any mismatch."""
    if len(key) != KEY_LEN:
        raise ValueError("AES-256-GCM requires a 32-byte key")
    if len(sealed) < NONCE_LEN + 16:
        raise AuthenticationFailure("sealed payload truncated")
    nonce, ct = sealed[:NONCE_LEN], sealed[NONCE_LEN:]
    try:
        return AESGCM(key).decrypt(nonce, ct, aad)
    except InvalidTag as exc:
        raise AuthenticationFailure("authentication tag mismatch") from exc


def new_indicator() -> bytes:
    return secrets.token_bytes(INDICATOR_LEN)


# ---------------------------------------------------------------------
# TOTP second factor
# ---------------------------------------------------------------------

def new_totp_secret() -> str:
    """Return a fresh base32 TOTP secret."""
    return base64.b32encode(secrets.token_bytes(TOTP_SECRET_LEN)).decode("ascii")


def _totp(secret_b32: str) -> TOTP:
    key = base64.b32decode(secret_b32.encode("ascii"), casefold=True)
    return TOTP(key, TOTP_DIGITS, hashes.SHA1(), TOTP_STEP)


def totp_provisioning_uri(secret_b32: str, username: str) -> str:
    """otpauth:// URI for authenticator apps."""
    return _totp(secret_b32).get_provisioning_uri(username, TOTP_ISSUER)


def totp_code(secret_b32: str, at: Optional[float] = None) -> str:
    """Current one-time code (used by tests and the setup screen)."""
    when = time.time() if at is None else at
    return _totp(secret_b32).generate(int(when)).decode("ascii")


def verify_totp(secret_b32: str, code: str, at: Optional[float] = None) -> bool:
    """Check *code*, tolerating one time step of clock drift either way."""
    code = (code or "").replace(" ", "")
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    when = int(time.time() if at is None else at)
    totp = _totp(secret_b32)
    for drift in (0, -TOTP_STEP, TOTP_STEP):
        try:
            totp.verify(code.encode("ascii"), when + drift)
            return True
        except InvalidToken:
            continue
    return False
