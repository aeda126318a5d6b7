from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from common.codec import FernetCodec, ShiftCodec
from state.kv import JsonFileKeyValueStore, MemoryKeyValueStore, S3KeyValueStore
from state.secure_store import SecureStore
from state.settings import VaultSettings


_ALL_VARS = (
    "VAULT_BACKEND",
    "VAULT_FILE_PATH",
    "VAULT_S3_BUCKET",
    "VAULT_S3_PREFIX",
    "VAULT_KEY_PREFIX",
    "VAULT_CODEC",
    "VAULT_FERNET_KEY",
    "VAULT_SORT_KEYS",
    "VAULT_BACKUP_DIR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ALL_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_from_empty_env():
    s = VaultSettings.from_env()
    assert s.backend == "memory"
    assert s.codec == "shift"
    assert s.key_prefix == "searchzone_"
    assert s.sort_keys is False

    store = SecureStore.from_settings(s)
    assert isinstance(store.kv, MemoryKeyValueStore)
    assert isinstance(store.codec, ShiftCodec)


def test_s3_backend_requires_bucket(monkeypatch):
    monkeypatch.setenv("VAULT_BACKEND", "s3")
    with pytest.raises(RuntimeError):
        VaultSettings.from_env()


def test_fernet_codec_requires_key(monkeypatch):
    monkeypatch.setenv("VAULT_CODEC", "fernet")
    with pytest.raises(RuntimeError):
        VaultSettings.from_env()


def test_unknown_backend_is_rejected(monkeypatch):
    monkeypatch.setenv("VAULT_BACKEND", "redis")
    with pytest.raises(ValueError):
        VaultSettings.from_env()


def test_file_backend_with_fernet_and_sorted_keys(monkeypatch, tmp_path):
    monkeypatch.setenv("VAULT_BACKEND", "file")
    monkeypatch.setenv("VAULT_FILE_PATH", str(tmp_path / "v.json"))
    monkeypatch.setenv("VAULT_CODEC", "fernet")
    monkeypatch.setenv("VAULT_FERNET_KEY", Fernet.generate_key().decode("ascii"))
    monkeypatch.setenv("VAULT_SORT_KEYS", "true")
    monkeypatch.setenv("VAULT_BACKUP_DIR", str(tmp_path / "out"))

    store = SecureStore.from_settings()
    assert isinstance(store.kv, JsonFileKeyValueStore)
    assert isinstance(store.codec, FernetCodec)
    assert store.serializer.sort_keys is True

    assert store.store("searchzone_k", {"z": 1, "a": 2})
    assert list(store.retrieve("searchzone_k")) == ["a", "z"]
    assert store.export_all() is not None
    assert len(list((tmp_path / "out").iterdir())) == 1


def test_s3_backend_uses_injected_client(monkeypatch):
    monkeypatch.setenv("VAULT_BACKEND", "s3")
    monkeypatch.setenv("VAULT_S3_BUCKET", "bucket")
    store = SecureStore.from_settings(s3=object())
    assert isinstance(store.kv, S3KeyValueStore)
