"""Emergency contacts: normalized store, versioned persistence and sync.

The store keeps at most one primary contact at all times; persistence is an
optimistic, full-list write serialized per user.
"""

from __future__ import annotations

from .errors import (
    AmbiguousPrimaryError,
    ContactsError,
    EncryptionKeyError,
    MigrationError,
    StorageReadError,
    StorageWriteError,
)
from .models import Contact, ContactCategory, ContactRelationship, new_contact
from .service import build_contacts_sync
from .store import ContactStore
from .sync import ContactsSync, WriteResult, WriteStatus

__all__ = [
    "AmbiguousPrimaryError",
    "Contact",
    "ContactCategory",
    "ContactRelationship",
    "ContactStore",
    "ContactsError",
    "ContactsSync",
    "EncryptionKeyError",
    "MigrationError",
    "StorageReadError",
    "StorageWriteError",
    "WriteResult",
    "WriteStatus",
    "build_contacts_sync",
    "new_contact",
]
