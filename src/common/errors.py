from __future__ import annotations


class VaultError(RuntimeError):
    """Base error for codec, integrity and persistence failures."""


class SerializationError(VaultError):
    """Record cannot be converted to canonical text or shifted into range."""


class DecodeError(VaultError, ValueError):
    """Printable-text decoding, shift inverse or JSON parse failed."""


class IntegrityMismatch(VaultError):
    """Recomputed digest differs from the stored digest."""

    def __init__(self, key: str, expected: str, actual: str) -> None:
        super().__init__(f"digest mismatch for {key!r}: stored={expected} computed={actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


class StorageReadError(VaultError):
    """Stored package content is malformed."""


class ImportFormatError(VaultError):
    """Backup file content is not a valid envelope."""


__all__ = [
    "VaultError",
    "SerializationError",
    "DecodeError",
    "IntegrityMismatch",
    "StorageReadError",
    "ImportFormatError",
]
