from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


ENV_BACKEND = "VAULT_BACKEND"
ENV_FILE_PATH = "VAULT_FILE_PATH"
ENV_S3_BUCKET = "VAULT_S3_BUCKET"
ENV_S3_PREFIX = "VAULT_S3_PREFIX"
ENV_KEY_PREFIX = "VAULT_KEY_PREFIX"
ENV_CODEC = "VAULT_CODEC"
ENV_FERNET_KEY = "VAULT_FERNET_KEY"
ENV_SORT_KEYS = "VAULT_SORT_KEYS"
ENV_BACKUP_DIR = "VAULT_BACKUP_DIR"

BACKENDS = ("memory", "file", "s3")
CODECS = ("shift", "fernet")

DEFAULT_KEY_PREFIX = "searchzone_"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _parse_bool(s: Optional[str], default: bool) -> bool:
    if s is None:
        return default
    return s.strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class VaultSettings:
    """
    Construction-time configuration for `SecureStore`.

    Environment variables (all optional unless noted)
    - `VAULT_BACKEND`:    memory | file | s3 (default memory)
    - `VAULT_FILE_PATH`:  JSON file for the file backend (default .cache/vault.json)
    - `VAULT_S3_BUCKET`:  bucket for the s3 backend (required for s3)
    - `VAULT_S3_PREFIX`:  object key prefix for the s3 backend
    - `VAULT_KEY_PREFIX`: prefix selecting keys for export (default searchzone_)
    - `VAULT_CODEC`:      shift | fernet (default shift)
    - `VAULT_FERNET_KEY`: urlsafe base64 Fernet key (required for fernet)
    - `VAULT_SORT_KEYS`:  1/true/yes sorts object keys (default: insertion order)
    - `VAULT_BACKUP_DIR`: directory receiving exported backups (default .)
    """

    backend: str = "memory"
    file_path: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    key_prefix: str = DEFAULT_KEY_PREFIX
    codec: str = "shift"
    fernet_key: Optional[str] = None
    sort_keys: bool = False
    backup_dir: str = "."

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"unknown backend {self.backend!r}; expected one of {', '.join(BACKENDS)}")
        if self.codec not in CODECS:
            raise ValueError(f"unknown codec {self.codec!r}; expected one of {', '.join(CODECS)}")
        if self.backend == "s3":
            _require(self.s3_bucket, ENV_S3_BUCKET)
        if self.codec == "fernet":
            _require(self.fernet_key, ENV_FERNET_KEY)

    @classmethod
    def from_env(cls) -> "VaultSettings":
        return cls(
            backend=(_getenv(ENV_BACKEND, "memory") or "memory").strip().lower(),
            file_path=_getenv(ENV_FILE_PATH),
            s3_bucket=_getenv(ENV_S3_BUCKET),
            s3_prefix=_getenv(ENV_S3_PREFIX, "") or "",
            key_prefix=_getenv(ENV_KEY_PREFIX, DEFAULT_KEY_PREFIX) or DEFAULT_KEY_PREFIX,
            codec=(_getenv(ENV_CODEC, "shift") or "shift").strip().lower(),
            fernet_key=_getenv(ENV_FERNET_KEY),
            sort_keys=_parse_bool(_getenv(ENV_SORT_KEYS), False),
            backup_dir=_getenv(ENV_BACKUP_DIR, ".") or ".",
        )
