"""
Encryption at rest for credentials kept in the settings collection.

Key resolution order:
1. Explicit master_key argument
2. LOGANALYZER_MASTER_KEY environment variable
3. Persisted dev key from data/.fernet_dev_key (survives restarts)
4. Auto-generate new dev key and persist it
"""

import base64
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)

HANDLE_SCHEME = "fernet://"


class DecryptionError(Exception):
    """Raised when a credential cannot be decrypted (key mismatch)."""
    pass


class FernetSecretStore:
    """Fernet-based local encryption of setting values."""

    def __init__(self, master_key: Optional[str] = None,
                 dev_key_path: str = os.path.join("data", ".fernet_dev_key")):
        self._dev_key_path = dev_key_path
        key = master_key or os.environ.get("LOGANALYZER_MASTER_KEY")
        if not key:
            key = self._load_dev_key()
            if key:
                logger.warning(
                    "LOGANALYZER_MASTER_KEY not set. Using persisted dev key from %s. "
                    "DO NOT use in production.", self._dev_key_path,
                )
            else:
                key = Fernet.generate_key().decode()
                self._persist_dev_key(key)
                logger.warning(
                    "LOGANALYZER_MASTER_KEY not set. Generated and persisted dev key at %s. "
                    "DO NOT use in production.", self._dev_key_path,
                )
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def _load_dev_key(self) -> Optional[str]:
        if os.path.isfile(self._dev_key_path):
            with open(self._dev_key_path, "r") as f:
                return f.read().strip() or None
        return None

    def _persist_dev_key(self, key: str) -> None:
        directory = os.path.dirname(self._dev_key_path)
        os.makedirs(directory if directory else ".", exist_ok=True)
        with open(self._dev_key_path, "w") as f:
            f.write(key)
        logger.info("Dev encryption key persisted to %s", self._dev_key_path)

    def store_secret(self, name: str, value: str) -> str:
        """Encrypt ``value`` and return an opaque handle."""
        encrypted = self._fernet.encrypt(value.encode())
        handle = base64.urlsafe_b64encode(encrypted).decode()
        return f"{HANDLE_SCHEME}{name}/{handle}"

    def retrieve_secret(self, name: str, handle: str) -> str:
        prefix = f"{HANDLE_SCHEME}{name}/"
        if not handle.startswith(prefix):
            raise DecryptionError(f"Stored value for {name} is not an encrypted handle")
        try:
            encrypted = base64.urlsafe_b64decode(handle[len(prefix):].encode())
            return self._fernet.decrypt(encrypted).decode()
        except (InvalidToken, ValueError) as e:
            raise DecryptionError(
                f"Cannot decrypt {name}. The encryption key has changed since it was saved; "
                f"please re-save it in Settings."
            ) from e
