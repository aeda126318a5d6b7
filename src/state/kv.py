from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol

import boto3
from botocore.exceptions import ClientError


DEFAULT_FILE_PATH = Path(".cache") / "vault.json"


class KeyValueStore(Protocol):
    """
    Synchronous string key-value store, shaped like browser localStorage.

    - `get` returns None for absent keys.
    - `count` / `key_at` allow enumeration by index; index order is
      backend-defined but stable between writes.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def count(self) -> int: ...

    def key_at(self, index: int) -> Optional[str]: ...


def iter_keys(kv: KeyValueStore) -> Iterator[str]:
    """Enumerate every key by index."""
    for i in range(kv.count()):
        key = kv.key_at(i)
        if key is not None:
            yield key


class MemoryKeyValueStore:
    """Insertion-ordered in-process store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._keys: Optional[List[str]] = None

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if key not in self._data:
            self._keys = None
        self._data[key] = str(value)

    def count(self) -> int:
        return len(self._data)

    def key_at(self, index: int) -> Optional[str]:
        if self._keys is None:
            self._keys = list(self._data)
        if 0 <= index < len(self._keys):
            return self._keys[index]
        return None

    def __len__(self) -> int:
        return len(self._data)


class JsonFileKeyValueStore:
    """
    Store backed by a single JSON object file: { key: value, ... }.

    - Loaded lazily on first access; a corrupt or non-object file is
      treated as empty.
    - Rewritten in full on every `set`. Write failures propagate.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else DEFAULT_FILE_PATH
        self._data: Dict[str, str] = {}
        self._keys: Optional[List[str]] = None
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            if self._path.exists():
                with self._path.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
                    if isinstance(raw, dict):
                        self._data = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        except (OSError, ValueError):
            # Corrupt file: start fresh
            self._data = {}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)

    def get(self, key: str) -> Optional[str]:
        self._ensure_loaded()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._ensure_loaded()
        if key not in self._data:
            self._keys = None
        self._data[key] = str(value)
        self._save()

    def count(self) -> int:
        self._ensure_loaded()
        return len(self._data)

    def key_at(self, index: int) -> Optional[str]:
        self._ensure_loaded()
        if self._keys is None:
            self._keys = list(self._data)
        if 0 <= index < len(self._keys):
            return self._keys[index]
        return None


class S3KeyValueStore:
    """
    One S3 object per key under an optional key prefix.

    - `get` maps NoSuchKey/404 to None; other S3 errors propagate.
    - Enumeration lists the prefix with `list_objects_v2` (paginated) and
      keeps the sorted listing until the next `set`.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = "",
        region_name: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._bucket = bucket
        self._prefix = prefix
        self._listing: Optional[List[str]] = None

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            resp = self._s3.get_object(Bucket=self._bucket, Key=self._object_key(key))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise
        return resp["Body"].read().decode("utf-8")

    def set(self, key: str, value: str) -> None:
        self._s3.put_object(
            Bucket=self._bucket,
            Key=self._object_key(key),
            Body=str(value).encode("utf-8"),
            ContentType="application/json",
        )
        self._listing = None

    def _keys(self) -> List[str]:
        if self._listing is not None:
            return self._listing
        keys: List[str] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self._bucket, "Prefix": self._prefix}
            if token:
                kwargs["ContinuationToken"] = token
            resp = self._s3.list_objects_v2(**kwargs)
            for item in resp.get("Contents", []) or []:
                keys.append(item["Key"][len(self._prefix):])
            if not resp.get("IsTruncated"):
                break
            token = resp.get("NextContinuationToken")
        self._listing = sorted(keys)
        return self._listing

    def count(self) -> int:
        return len(self._keys())

    def key_at(self, index: int) -> Optional[str]:
        keys = self._keys()
        if 0 <= index < len(keys):
            return keys[index]
        return None


__all__ = [
    "KeyValueStore",
    "iter_keys",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "S3KeyValueStore",
]
