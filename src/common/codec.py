from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any, Callable, Mapping, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field

from .errors import DecodeError, SerializationError


DEFAULT_SHIFT = 7
LEGACY_VERSION = "2.0"
FERNET_VERSION = "fernet-1"

# The base64 step works on 8-bit Latin text: every shifted code point must
# fit in one byte. Nothing is clamped or wrapped.
MAX_CODE_POINT = 0xFF


def now_ms() -> int:
    return int(time.time() * 1000)


class EncodedEnvelope(BaseModel):
    """Encoded text plus the codec version and creation time (epoch millis)."""

    model_config = ConfigDict(frozen=True)

    data: str = Field(..., description="Obscured, printable-encoded record")
    version: str = Field(..., description="Advisory codec version; never enforced")
    timestamp: int = Field(..., description="Creation time in epoch milliseconds")


EnvelopeLike = Union[EncodedEnvelope, Mapping[str, Any], str]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name!r}")


class CanonicalJson:
    """
    Deterministic JSON text form used as input to both the codec and the digest.

    - Compact separators and raw (unescaped) non-ASCII, matching `JSON.stringify`.
    - Object keys keep insertion order by default, which is what records
      written by the browser module were encoded and hashed with.
      `sort_keys=True` orders keys so the digest does not depend on how a
      mapping was built.
    - NaN and Infinity are rejected in both directions.
    """

    def __init__(self, *, sort_keys: bool = False) -> None:
        self.sort_keys = sort_keys

    def dumps(self, value: Any) -> str:
        try:
            return json.dumps(
                value,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
                sort_keys=self.sort_keys,
            )
        except (TypeError, ValueError, RecursionError) as ex:
            raise SerializationError(f"record is not JSON-serializable: {ex}") from ex

    def loads(self, text: str) -> Any:
        try:
            return json.loads(text, parse_constant=_reject_constant)
        except (TypeError, ValueError, RecursionError) as ex:
            raise DecodeError(f"invalid serialized form: {ex}") from ex

    def __repr__(self) -> str:
        return f"CanonicalJson(sort_keys={self.sort_keys})"


def shift_text(text: str, shift: int) -> str:
    """Add `shift` to every code point of `text`.

    Raises ValueError when a result falls outside 0..MAX_CODE_POINT.
    """
    out = []
    for pos, ch in enumerate(text):
        code = ord(ch) + shift
        if code < 0 or code > MAX_CODE_POINT:
            raise ValueError(
                f"code point U+{ord(ch):04X} at position {pos} shifts out of range 0x00-0x{MAX_CODE_POINT:02X}"
            )
        out.append(chr(code))
    return "".join(out)


class BaseCodec:
    """Shared envelope handling; subclasses implement `encode`/`decode`."""

    version: str = LEGACY_VERSION

    def __init__(
        self,
        *,
        serializer: Optional[CanonicalJson] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._serializer = serializer or CanonicalJson()
        self._clock = clock

    @property
    def serializer(self) -> CanonicalJson:
        return self._serializer

    def encode(self, record: Any) -> str:
        raise NotImplementedError

    def decode(self, text: str) -> Any:
        raise NotImplementedError

    def encrypt(self, record: Any) -> EncodedEnvelope:
        return EncodedEnvelope(data=self.encode(record), version=self.version, timestamp=self._clock())

    def decrypt(self, payload: EnvelopeLike) -> Any:
        """Decode an envelope. A bare string is taken as the envelope's `data`."""
        if isinstance(payload, EncodedEnvelope):
            return self.decode(payload.data)
        if isinstance(payload, str):
            return self.decode(payload)
        if isinstance(payload, Mapping) and isinstance(payload.get("data"), str):
            return self.decode(payload["data"])
        raise DecodeError("envelope has no 'data' text")


class ShiftCodec(BaseCodec):
    """
    Legacy obfuscation codec: additive code-point shift followed by base64.

    This is not encryption. It reproduces the text written by the legacy
    browser module (shift of 7, version "2.0") so existing records stay
    readable. Use `FernetCodec` when confidentiality matters.

    Range assumption: the serialized text is 8-bit Latin. A code point that
    would shift past 0xFF fails `encode` with SerializationError, and decoded
    bytes that would shift below 0 fail `decode` with DecodeError.
    """

    def __init__(
        self,
        *,
        shift: int = DEFAULT_SHIFT,
        version: str = LEGACY_VERSION,
        serializer: Optional[CanonicalJson] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(serializer=serializer, clock=clock)
        self.shift = shift
        self.version = version

    def encode(self, record: Any) -> str:
        text = self._serializer.dumps(record)
        try:
            shifted = shift_text(text, self.shift)
        except ValueError as ex:
            raise SerializationError(str(ex)) from ex
        return base64.b64encode(shifted.encode("latin-1")).decode("ascii")

    def decode(self, text: str) -> Any:
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError, TypeError) as ex:
            raise DecodeError(f"malformed base64 text: {ex}") from ex
        try:
            plain = shift_text(raw.decode("latin-1"), -self.shift)
        except ValueError as ex:
            raise DecodeError(str(ex)) from ex
        return self._serializer.loads(plain)


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


class FernetCodec(BaseCodec):
    """Authenticated encryption of the canonical text with Fernet (AES-128-CBC + HMAC)."""

    version = FERNET_VERSION

    def __init__(
        self,
        key: str | bytes,
        *,
        serializer: Optional[CanonicalJson] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(serializer=serializer, clock=clock)
        self._fernet = _to_fernet(key)

    def encode(self, record: Any) -> str:
        try:
            plaintext = self._serializer.dumps(record).encode("utf-8")
        except UnicodeEncodeError as ex:
            raise SerializationError(f"record text is not valid UTF-8: {ex}") from ex
        return self._fernet.encrypt(plaintext).decode("ascii")

    def decode(self, text: str) -> Any:
        try:
            token = text.encode("ascii") if isinstance(text, str) else text
            decrypted = self._fernet.decrypt(token)
        except (InvalidToken, TypeError, UnicodeEncodeError) as ex:
            raise DecodeError("Failed to decrypt: invalid Fernet token") from ex
        try:
            plain = decrypted.decode("utf-8")
        except UnicodeDecodeError as ex:
            raise DecodeError("decrypted payload is not UTF-8") from ex
        return self._serializer.loads(plain)


__all__ = [
    "DEFAULT_SHIFT",
    "LEGACY_VERSION",
    "FERNET_VERSION",
    "MAX_CODE_POINT",
    "EncodedEnvelope",
    "CanonicalJson",
    "shift_text",
    "BaseCodec",
    "ShiftCodec",
    "FernetCodec",
    "now_ms",
]
