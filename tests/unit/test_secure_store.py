from __future__ import annotations

import base64
import json
import logging

from cryptography.fernet import Fernet

from common.codec import CanonicalJson, FernetCodec, ShiftCodec, shift_text
from common.integrity import rolling_hash
from state.kv import MemoryKeyValueStore
from state.models import StoredPackage
from state.secure_store import SecureStore


NOW_MS = 1_700_000_000_000


def _store(kv=None, **kwargs) -> SecureStore:
    return SecureStore(kv if kv is not None else MemoryKeyValueStore(), clock=lambda: NOW_MS, **kwargs)


def test_store_then_retrieve_returns_equal_record():
    store = _store()
    rec = {"a": 1, "b": [True, None, "s"]}
    assert store.store("x", rec) is True
    assert store.retrieve("x") == rec


def test_stored_text_matches_browser_package_shape():
    kv = MemoryKeyValueStore()
    _store(kv).store("x", {"a": 1})
    assert kv.get("x") == (
        '{"encrypted":{"data":"giloKUE4hA==","version":"2.0","timestamp":1700000000000},'
        '"hash":"55f58602","timestamp":1700000000000}'
    )


def test_reads_package_written_by_browser_module():
    kv = MemoryKeyValueStore(
        {
            "searchzone_x": '{"encrypted":{"data":"giloKUE4hA==","version":"2.0","timestamp":1},'
            '"hash":"55f58602","timestamp":1}'
        }
    )
    assert _store(kv).retrieve("searchzone_x") == {"a": 1}


def test_retrieve_missing_key_returns_none(caplog):
    with caplog.at_level(logging.WARNING):
        assert _store().retrieve("nope") is None
    assert caplog.records == []


def test_tampered_digest_is_rejected(caplog):
    kv = MemoryKeyValueStore()
    store = _store(kv)
    store.store("x", {"a": 1})

    raw = json.loads(kv.get("x"))
    raw["hash"] = ("0" if raw["hash"][0] != "0" else "1") + raw["hash"][1:]
    kv.set("x", json.dumps(raw))

    with caplog.at_level(logging.WARNING, logger="state.secure_store"):
        assert store.retrieve("x") is None
    assert any("Data integrity check failed" in r.getMessage() for r in caplog.records)


def test_tampered_payload_is_rejected():
    kv = MemoryKeyValueStore()
    store = _store(kv)
    store.store("x", {"a": 1})
    store.store("y", {"a": 2})

    # Swap envelopes: each now decodes to a record its digest does not cover
    px = StoredPackage.from_json(kv.get("x"))
    py = StoredPackage.from_json(kv.get("y"))
    kv.set("x", StoredPackage(encrypted=py.encrypted, hash=px.hash, timestamp=px.timestamp).to_json())
    assert store.retrieve("x") is None


def test_malformed_package_returns_none_and_logs(caplog):
    kv = MemoryKeyValueStore({"x": "not json", "y": '{"encrypted":{"data":"@@@","version":"2.0","timestamp":1},"hash":"0","timestamp":1}'})
    store = _store(kv)
    with caplog.at_level(logging.ERROR, logger="state.secure_store"):
        assert store.retrieve("x") is None
        assert store.retrieve("y") is None
    assert sum("Retrieval error" in r.getMessage() for r in caplog.records) == 2


def test_store_unserializable_record_returns_false():
    kv = MemoryKeyValueStore()
    store = _store(kv)
    assert store.store("x", {"f": object()}) is False
    assert store.store("y", "ÿ") is False
    assert kv.count() == 0


def test_store_returns_false_when_backend_write_fails():
    class _Broken(MemoryKeyValueStore):
        def set(self, key: str, value: str) -> None:
            raise OSError("disk full")

    assert _store(_Broken()).store("x", [1]) is False


def test_retrieve_returns_none_when_backend_read_fails():
    class _Broken(MemoryKeyValueStore):
        def get(self, key: str):
            raise OSError("unreadable")

    assert _store(_Broken()).retrieve("x") is None


def _browser_package(text: str) -> str:
    # Package exactly as the browser module built it from JSON.stringify output
    data = base64.b64encode(shift_text(text, 7).encode("latin-1")).decode("ascii")
    hash_hex = format(abs(rolling_hash(text)), "x")
    return json.dumps(
        {"encrypted": {"data": data, "version": "2.0", "timestamp": 1}, "hash": hash_hex, "timestamp": 1},
        separators=(",", ":"),
    )


def test_default_store_reads_browser_package_with_unsorted_keys():
    kv = MemoryKeyValueStore({"searchzone_x": _browser_package('{"b":1,"a":2}')})
    rec = _store(kv).retrieve("searchzone_x")
    assert rec == {"b": 1, "a": 2}
    assert list(rec) == ["b", "a"]


def test_sorted_digest_rejects_insertion_order_package():
    kv = MemoryKeyValueStore({"x": _browser_package('{"b":1,"a":2}')})
    sorted_store = _store(kv, codec=ShiftCodec(serializer=CanonicalJson(sort_keys=True)))
    assert sorted_store.retrieve("x") is None

    sorted_store.store("y", {"b": 1, "a": 2})
    assert sorted_store.retrieve("y") == {"a": 2, "b": 1}


def test_fernet_codec_store_roundtrip():
    kv = MemoryKeyValueStore()
    store = _store(kv, codec=FernetCodec(Fernet.generate_key()))
    rec = {"note": "€ 😀", "n": [1, 2]}
    assert store.store("k", rec)
    assert '"version":"fernet-1"' in kv.get("k")
    assert store.retrieve("k") == rec


def test_fernet_store_returns_false_for_lone_surrogate():
    kv = MemoryKeyValueStore()
    store = _store(kv, codec=FernetCodec(Fernet.generate_key()))
    assert store.store("x", {"a": "\ud800"}) is False
    assert kv.count() == 0
