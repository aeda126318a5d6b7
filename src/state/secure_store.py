from __future__ import annotations

import logging
import os
from concurrent.futures import Future
from datetime import datetime, UTC
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from common.codec import BaseCodec, CanonicalJson, FernetCodec, ShiftCodec, now_ms
from common.errors import (
    DecodeError,
    ImportFormatError,
    IntegrityMismatch,
    StorageReadError,
    VaultError,
)
from common.integrity import digest

from .backup import (
    FAILURE_MESSAGE,
    SUCCESS_MESSAGE,
    BackupFileReader,
    DirectoryFileSaver,
    FileSaver,
    Notifier,
    backup_filename,
    log_notifier,
)
from .kv import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    S3KeyValueStore,
    iter_keys,
)
from .models import StoredPackage
from .settings import DEFAULT_KEY_PREFIX, VaultSettings


logger = logging.getLogger(__name__)


class SecureStore:
    """
    Codec + digest persistence over a string key-value store.

    Usage
    - `store(key, record)` writes a `StoredPackage` (envelope + digest) and
      returns True, or False when the record cannot be encoded or the
      backend write fails.
    - `retrieve(key)` returns the record, or None when the key is absent,
      the package is malformed or undecodable, or the digest does not match.
    - `export_all(prefix)` snapshots raw entries under a prefix into one
      envelope and hands the bytes to the configured `FileSaver`.
    - `import_all(blob)` / `import_file(path)` restore such a snapshot and
      report the outcome through the notifier.

    No public operation raises; failures are logged and returned as None/False.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        codec: Optional[BaseCodec] = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        saver: Optional[FileSaver] = None,
        notifier: Notifier = log_notifier,
        reader: Optional[BackupFileReader] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._kv = kv
        self._codec = codec or ShiftCodec(clock=clock)
        self._key_prefix = key_prefix
        self._saver = saver
        self._notifier = notifier
        self._owns_reader = reader is None
        self._reader = reader
        self._clock = clock

    # -------- Construction helpers --------
    @classmethod
    def from_settings(
        cls,
        settings: Optional[VaultSettings] = None,
        *,
        s3: Optional[object] = None,
        notifier: Notifier = log_notifier,
    ) -> "SecureStore":
        settings = settings or VaultSettings.from_env()
        serializer = CanonicalJson(sort_keys=settings.sort_keys)

        kv: KeyValueStore
        if settings.backend == "file":
            kv = JsonFileKeyValueStore(settings.file_path)
        elif settings.backend == "s3":
            kv = S3KeyValueStore(s3=s3, bucket=settings.s3_bucket or "", prefix=settings.s3_prefix)
        else:
            kv = MemoryKeyValueStore()

        codec: BaseCodec
        if settings.codec == "fernet":
            codec = FernetCodec(settings.fernet_key or "", serializer=serializer)
        else:
            codec = ShiftCodec(serializer=serializer)

        return cls(
            kv,
            codec=codec,
            key_prefix=settings.key_prefix,
            saver=DirectoryFileSaver(settings.backup_dir),
            notifier=notifier,
        )

    def close(self) -> None:
        if self._owns_reader and self._reader is not None:
            self._reader.close()
            self._reader = None

    def __enter__(self) -> "SecureStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    @property
    def codec(self) -> BaseCodec:
        return self._codec

    @property
    def serializer(self) -> CanonicalJson:
        return self._codec.serializer

    # -------- Records --------
    def store(self, key: str, record: Any) -> bool:
        try:
            package = StoredPackage(
                encrypted=self._codec.encrypt(record),
                hash=digest(record, self.serializer),
                timestamp=self._clock(),
            )
        except VaultError:
            logger.exception("Encryption error for key %r", key)
            return False

        try:
            self._kv.set(key, package.to_json())
        except Exception:
            logger.exception("Storage write failed for key %r", key)
            return False
        return True

    def retrieve(self, key: str) -> Any:
        try:
            stored = self._kv.get(key)
        except Exception:
            logger.exception("Retrieval error for key %r", key)
            return None
        if not stored:
            return None

        try:
            return self._open(key, stored)
        except IntegrityMismatch as ex:
            logger.warning("Data integrity check failed: %s", ex)
        except VaultError:
            logger.exception("Retrieval error for key %r", key)
        return None

    def _open(self, key: str, stored: str) -> Any:
        try:
            package = StoredPackage.from_json(stored)
        except ValidationError as ex:
            raise StorageReadError(f"malformed stored package under {key!r}") from ex

        record = self._codec.decrypt(package.encrypted)
        actual = digest(record, self.serializer)
        if actual != package.hash:
            raise IntegrityMismatch(key, package.hash, actual)
        return record

    # -------- Backup --------
    def export_all(self, prefix: Optional[str] = None) -> Optional[bytes]:
        """Encode every raw entry under `prefix` into one backup blob.

        Returns the blob (also handed to the saver, when configured), or
        None if collecting, encoding or saving fails. The saver never
        receives a partial blob.
        """
        prefix = self._key_prefix if prefix is None else prefix
        try:
            snapshot: Dict[str, str] = {}
            for key in iter_keys(self._kv):
                if not key.startswith(prefix):
                    continue
                value = self._kv.get(key)
                if value is not None:
                    snapshot[key] = value
            blob = self._codec.encrypt(snapshot).model_dump_json().encode("utf-8")
        except Exception:
            logger.exception("Backup export failed for prefix %r", prefix)
            return None

        filename = backup_filename(prefix, now=datetime.fromtimestamp(self._clock() / 1000, UTC))
        if self._saver is not None:
            try:
                self._saver.save(blob, filename)
            except Exception:
                logger.exception("Could not save backup %s", filename)
                return None
        logger.info("Exported %d entries to %s", len(snapshot), filename)
        return blob

    def _read_backup(self, content: bytes | str) -> Dict[str, Any]:
        try:
            text = content.decode("utf-8") if isinstance(content, (bytes, bytearray)) else content
            mapping = self._codec.decrypt(self.serializer.loads(text))
        except (DecodeError, UnicodeDecodeError, AttributeError) as ex:
            raise ImportFormatError(f"backup is not a valid envelope: {ex}") from ex
        if not isinstance(mapping, dict):
            raise ImportFormatError("backup envelope does not contain a key/value mapping")
        return mapping

    def _notify(self, ok: bool, message: str) -> None:
        try:
            self._notifier(ok, message)
        except Exception:
            logger.exception("Backup notifier failed for %r", message)

    def import_all(self, content: bytes | str) -> bool:
        """Restore a blob produced by `export_all`, overwriting existing keys.

        Entries are written verbatim; individual packages are not verified.
        """
        try:
            mapping = self._read_backup(content)
        except ImportFormatError as ex:
            logger.error("%s: %s", FAILURE_MESSAGE, ex)
            self._notify(False, FAILURE_MESSAGE)
            return False

        try:
            for key, value in mapping.items():
                self._kv.set(str(key), value if isinstance(value, str) else self.serializer.dumps(value))
        except Exception:
            logger.exception("Backup restore failed after reading %d entries", len(mapping))
            self._notify(False, "Backup restore failed")
            return False

        logger.info("Restored %d entries from backup", len(mapping))
        self._notify(True, SUCCESS_MESSAGE)
        return True

    def import_file(
        self,
        path: os.PathLike[str] | str,
        reader: Optional[BackupFileReader] = None,
    ) -> "Future[bool]":
        """Read `path` asynchronously and run `import_all` once it is loaded.

        `reader` overrides the store's own reader for this call only.
        """
        if reader is None:
            if self._reader is None:
                self._reader = BackupFileReader()
            reader = self._reader

        def on_error(exc: BaseException) -> bool:
            logger.error("Could not read backup file %s: %s", path, exc)
            self._notify(False, FAILURE_MESSAGE)
            return False

        return reader.read(path, self.import_all, on_error)


__all__ = ["SecureStore"]
