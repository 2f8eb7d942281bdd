"""Persistence gateway for emergency contacts.

Each user's contacts live in one versioned record::

    <namespace>:<userId> → {"version": 3, "contacts": [...], "lastSync": "..."}

``save`` always rewrites the full record; ``load`` never raises (a missing
or unreadable record is treated as "no prior data").
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from firstaid.config import DEFAULT_NAMESPACE
from firstaid.contacts.backends import KeyValueBackend
from firstaid.contacts.crypto import FieldCipher
from firstaid.contacts.errors import StorageReadError, StorageWriteError
from firstaid.contacts.models import Contact, utcnow

logger = logging.getLogger(__name__)

__all__ = ["StorageKeys", "ContactsStorage", "StorageInfo"]


@dataclass(frozen=True)
class StorageKeys:
    """Key layout under a namespace."""

    namespace: str = DEFAULT_NAMESPACE

    @property
    def prefix(self) -> str:
        return f"{self.namespace}:"

    def user(self, user_id: str) -> str:
        return f"{self.prefix}{user_id}"

    @property
    def version(self) -> str:
        return f"{self.prefix}version"

    @property
    def migration_history(self) -> str:
        return f"{self.prefix}migration_history"


@dataclass
class StorageInfo:
    exists: bool
    version: Optional[int]
    last_sync: Optional[str]
    contact_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.exists,
            "version": self.version,
            "lastSync": self.last_sync,
            "contactCount": self.contact_count,
        }


class ContactsStorage:
    """Reads and writes per-user contact records.

    Parameters
    ----------
    backend:
        Key-value backend holding the records.
    schema_version:
        Version stamped on every saved record (the latest registered
        migration).
    keys:
        Key layout; defaults to the standard namespace.
    cipher:
        Optional :class:`FieldCipher`; when set, ``phone`` and ``notes`` are
        stored encrypted.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        schema_version: int,
        keys: Optional[StorageKeys] = None,
        cipher: Optional[FieldCipher] = None,
    ) -> None:
        self.backend = backend
        self.schema_version = schema_version
        self.keys = keys or StorageKeys()
        self.cipher = cipher

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    async def load(self, user_id: str) -> List[Contact]:
        """Return the stored contacts for *user_id*, or ``[]``."""
        try:
            return await self._load_strict(user_id)
        except StorageReadError as e:
            logger.warning("[storage] Treating record for %s as empty: %s", user_id, e)
            return []
        except OSError as e:
            logger.warning("[storage] Failed to read record for %s: %s", user_id, e)
            return []

    async def _load_strict(self, user_id: str) -> List[Contact]:
        raw = await self.backend.get_item(self.keys.user(user_id))
        if not raw:
            return []

        record = _decode_record(raw)
        version = record.get("version")
        if version != self.schema_version:
            logger.warning(
                "[storage] Data version mismatch for %s: expected %d, got %r",
                user_id, self.schema_version, version,
            )

        stored = record["contacts"]
        if self.cipher is not None:
            stored = self.cipher.decrypt_contacts(stored)
        try:
            return [Contact.from_dict(item) for item in stored]
        except (KeyError, ValueError, TypeError) as e:
            raise StorageReadError(f"Malformed contact in record: {e}") from e

    async def save(self, contacts: List[Contact], user_id: str) -> None:
        """Overwrite the record for *user_id* with the full *contacts* list."""
        try:
            payload = [c.to_dict() for c in contacts]
            if self.cipher is not None:
                payload = self.cipher.encrypt_contacts(payload)
            record = {
                "version": self.schema_version,
                "contacts": payload,
                "lastSync": utcnow().isoformat(),
            }
            await self.backend.set_item(self.keys.user(user_id), json.dumps(record, ensure_ascii=False))
            await self.backend.set_item(self.keys.version, str(self.schema_version))
        except StorageWriteError:
            raise
        except Exception as e:
            logger.error("[storage] Failed to save contacts for %s: %s", user_id, e)
            raise StorageWriteError("Failed to save emergency contacts") from e
        logger.debug("[storage] Saved %d contacts for %s", len(contacts), user_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def clear_contacts(self, user_id: str) -> None:
        try:
            await self.backend.remove_item(self.keys.user(user_id))
        except Exception as e:
            raise StorageWriteError("Failed to clear emergency contacts") from e

    async def has_contacts(self, user_id: str) -> bool:
        try:
            return await self.backend.get_item(self.keys.user(user_id)) is not None
        except Exception as e:
            logger.warning("[storage] Failed to check contacts existence: %s", e)
            return False

    async def get_storage_version(self) -> Optional[int]:
        try:
            raw = await self.backend.get_item(self.keys.version)
            return int(raw) if raw else None
        except Exception as e:
            logger.warning("[storage] Failed to get storage version: %s", e)
            return None

    async def get_storage_info(self, user_id: str) -> StorageInfo:
        """Record summary for debugging screens; never raises."""
        try:
            raw = await self.backend.get_item(self.keys.user(user_id))
            if not raw:
                return StorageInfo(False, await self.get_storage_version(), None, 0)
            record = _decode_record(raw)
            return StorageInfo(
                exists=True,
                version=record.get("version"),
                last_sync=record.get("lastSync"),
                contact_count=len(record["contacts"]),
            )
        except Exception as e:
            logger.warning("[storage] Failed to get storage info: %s", e)
            return StorageInfo(False, None, None, 0)

    async def clear_all_data(self) -> None:
        """Remove every key under the namespace, for all users."""
        try:
            keys = [k for k in await self.backend.get_all_keys() if k.startswith(self.keys.prefix)]
            if keys:
                await self.backend.multi_remove(keys)
        except Exception as e:
            raise StorageWriteError("Failed to clear all data") from e
        logger.info("[storage] Cleared %d keys under %s", len(keys), self.keys.namespace)


def _decode_record(raw: str) -> Dict[str, Any]:
    try:
        record = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise StorageReadError(f"Invalid JSON: {e}") from e
    if not isinstance(record, dict) or not isinstance(record.get("contacts"), list):
        raise StorageReadError("Invalid data format")
    return record
