from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from common.codec import EncodedEnvelope


class StoredPackage(BaseModel):
    """
    Unit persisted under a storage key.

    Fields
    - encrypted: envelope produced by the codec for the record.
    - hash: hex digest of the record's canonical form, computed before encoding.
    - timestamp: write time in epoch milliseconds.

    Notes
    - `to_json()` emits compact JSON in field order (encrypted, hash, timestamp),
      which is the exact text the browser module wrote with JSON.stringify.
    - A digest that no longer matches the decoded record signals corruption
      or tampering.
    """

    model_config = ConfigDict(frozen=True)

    encrypted: EncodedEnvelope
    hash: str = Field(..., description="Lowercase hex digest of the record")
    timestamp: int = Field(..., description="Write time in epoch milliseconds")

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "StoredPackage":
        return cls.model_validate_json(raw)
