from __future__ import annotations

import logging
import os
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, UTC
from pathlib import Path
from typing import Callable, Optional, Protocol


logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".enc"
SUCCESS_MESSAGE = "Backup restored successfully!"
FAILURE_MESSAGE = "Invalid backup file"

Notifier = Callable[[bool, str], None]


def backup_filename(prefix: str, *, now: Optional[datetime] = None) -> str:
    """`<prefix>backup_<YYYY-MM-DD>.enc`, dated in UTC."""
    dt = now or datetime.now(UTC)
    return f"{prefix}backup_{dt.date().isoformat()}{BACKUP_SUFFIX}"


def log_notifier(ok: bool, message: str) -> None:
    if ok:
        logger.info(message)
    else:
        logger.error(message)


class FileSaver(Protocol):
    def save(self, blob: bytes, filename: str) -> None: ...


class DirectoryFileSaver:
    """Writes backup blobs into a directory, creating it when needed."""

    def __init__(self, directory: os.PathLike[str] | str = ".") -> None:
        self._dir = Path(directory)
        self.last_path: Optional[Path] = None

    def save(self, blob: bytes, filename: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / filename
        path.write_bytes(blob)
        self.last_path = path


class BackupFileReader:
    """
    Reads a backup file off the calling thread.

    `read()` schedules exactly one read and calls exactly one of
    `on_load(text)` / `on_error(exc)` when it completes. There is no
    cancellation path once the read is scheduled.
    """

    def __init__(self, executor: Optional[Executor] = None) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="backup-reader")

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "BackupFileReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def read(
        self,
        path: os.PathLike[str] | str,
        on_load: Callable[[str], bool],
        on_error: Callable[[BaseException], bool],
    ) -> "Future[bool]":
        def _run() -> bool:
            try:
                text = Path(path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                return on_error(exc)
            return on_load(text)

        return self._executor.submit(_run)


__all__ = [
    "BACKUP_SUFFIX",
    "SUCCESS_MESSAGE",
    "FAILURE_MESSAGE",
    "Notifier",
    "backup_filename",
    "log_notifier",
    "FileSaver",
    "DirectoryFileSaver",
    "BackupFileReader",
]
