"""
Persistence for obscured JSON records.

Records are encoded by a codec (legacy shift+base64, or Fernet), packaged
with an integrity digest and written to a string key-value backend
(memory, JSON file, or S3). Backups snapshot every entry under a key
prefix into a single encoded file.
"""

from .models import StoredPackage
from .secure_store import SecureStore
from .settings import VaultSettings

__all__ = ["StoredPackage", "SecureStore", "VaultSettings"]
