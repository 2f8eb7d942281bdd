"""Field-level encryption for contacts at rest.

Only the sensitive fields (``phone`` and ``notes``) are encrypted; names,
categories and timestamps stay readable so storage info and migrations can
work on the record without the key.

Uses Fernet symmetric encryption (AES-128-CBC + HMAC).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from firstaid.contacts.errors import EncryptionKeyError, StorageReadError

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = ("phone", "notes")


class FieldCipher:
    """Encrypts and decrypts the sensitive fields of persisted contacts.

    Example:
        cipher = FieldCipher.from_key_file(Path("~/.firstaid/.contacts.key"))
        stored = cipher.encrypt_contacts([c.to_dict() for c in contacts])
        plain = cipher.decrypt_contacts(stored)
    """

    def __init__(self, key: bytes) -> None:
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise EncryptionKeyError(f"Invalid encryption key: {e}") from e

    @classmethod
    def generate(cls) -> "FieldCipher":
        return cls(Fernet.generate_key())

    @classmethod
    def from_key_file(cls, key_path: Path, auto_create: bool = True) -> "FieldCipher":
        """Load the key at *key_path*, creating it (mode 0600) if missing."""
        key_path = Path(key_path)
        if key_path.exists():
            try:
                key = key_path.read_bytes().strip()
            except OSError as e:
                raise EncryptionKeyError(f"Failed to load encryption key: {e}") from e
            return cls(key)

        if not auto_create:
            raise EncryptionKeyError(f"Encryption key not found: {key_path}")

        key = Fernet.generate_key()
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_bytes(key)
        try:
            os.chmod(key_path, 0o600)
        except OSError as e:
            logger.warning("Could not set key file permissions: %s", e)
        logger.info("Created new contacts encryption key at %s", key_path)
        return cls(key)

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, AttributeError) as e:
            raise StorageReadError("Failed to decrypt contact field") from e

    def encrypt_contacts(self, contacts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._map_fields(c, self.encrypt) for c in contacts]

    def decrypt_contacts(self, contacts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._map_fields(c, self.decrypt) for c in contacts]

    @staticmethod
    def _map_fields(contact: Dict[str, Any], fn: Callable[[str], str]) -> Dict[str, Any]:
        if not isinstance(contact, dict):
            raise StorageReadError("Contact record must be an object")
        out = dict(contact)
        for name in SENSITIVE_FIELDS:
            value: Optional[str] = out.get(name)
            if value:
                out[name] = fn(value)
        return out
