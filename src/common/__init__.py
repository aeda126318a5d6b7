"""
Common utilities for searchzone-vault.

Modules:
- codec: canonical JSON, legacy shift codec, Fernet codec, envelopes
- integrity: rolling 32-bit digest for corruption detection
- errors: exception taxonomy shared by codec and persistence
"""

__all__ = [
    "codec",
    "integrity",
    "errors",
]
