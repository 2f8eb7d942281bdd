"""Exceptions raised inside the emergency contacts core.

None of these cross the :class:`~firstaid.contacts.sync.ContactsSync`
boundary; the orchestrator turns them into ``store.error`` values and
:class:`~firstaid.contacts.sync.WriteResult` statuses.
"""

from __future__ import annotations

from typing import Optional


class ContactsError(Exception):
    """Base exception for the contacts core."""
    pass


class StorageReadError(ContactsError):
    """Persisted record is missing, corrupt or undecryptable."""
    pass


class StorageWriteError(ContactsError):
    """Writing the persisted record failed."""
    pass


class EncryptionKeyError(ContactsError):
    """Raised when there's a problem with the encryption key."""
    pass


class AmbiguousPrimaryError(ContactsError):
    """Bulk replace received more than one contact flagged as primary."""

    def __init__(self, contact_ids: list[str]) -> None:
        self.contact_ids = list(contact_ids)
        super().__init__(
            f"More than one contact flagged as primary: {', '.join(self.contact_ids)}"
        )


class MigrationError(ContactsError):
    """A migration step failed; carries the failing target version."""

    def __init__(self, version: int, cause: Optional[BaseException] = None) -> None:
        self.version = version
        self.cause = cause
        message = f"Migration failed at version {version}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
