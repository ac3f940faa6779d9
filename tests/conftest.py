# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from epicvault import crypto
from epicvault.dispatcher import ActionDispatcher, Session
from epicvault.models import Document
from epicvault.store import DocumentStore


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Drop Argon2 costs to the minimum so the suite runs quickly.

    Every crypto function reads the module constants at call time, so
    patching them here is enough.
    """
    monkeypatch.setattr(crypto, "KDF_PARAMS", crypto.Argon2Params(1, 8, 1, 64))
    monkeypatch.setattr(crypto, "HASH_PARAMS", crypto.Argon2Params(1, 8, 1, 32))


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep load_config/save_config away from the real home directory."""
    cfg_home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(cfg_home))
    monkeypatch.setenv("APPDATA", str(cfg_home))
    return cfg_home


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture()
def store(data_dir: Path) -> DocumentStore:
    return DocumentStore(data_dir)


@pytest.fixture()
def registered(store: DocumentStore) -> Document:
    """An account 'alice' with password 'pw1' and an empty document."""
    return store.register("alice", "pw1")


@pytest.fixture()
def dispatcher(store: DocumentStore) -> ActionDispatcher:
    return ActionDispatcher(store)


@pytest.fixture()
def session() -> Session:
    return Session()
