"""In-memory normalized emergency contacts store.

State is kept normalized: ``contacts`` maps id → :class:`Contact` and
``order`` keeps insertion order for stable iteration. The primary contact is
tracked twice (``Contact.is_primary`` and ``primary_contact_id``); both are
only ever changed together by :meth:`ContactStore._assign_primary`.

All mutations are synchronous and perform no I/O. Persistence is the job of
:class:`~firstaid.contacts.sync.ContactsSync`.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from firstaid.contacts.errors import AmbiguousPrimaryError
from firstaid.contacts.models import Contact, ContactCategory, apply_updates

logger = logging.getLogger(__name__)

__all__ = ["ContactStore"]


class ContactStore:
    """Normalized contact collection with the single-primary invariant.

    Parameters
    ----------
    strict_primary:
        When ``True``, :meth:`set_contacts` rejects input with more than one
        primary contact instead of keeping the first one.
    """

    def __init__(self, strict_primary: bool = False) -> None:
        self.strict_primary = strict_primary
        self._reset()

    def _reset(self) -> None:
        self._contacts: Dict[str, Contact] = {}
        self._order: List[str] = []
        self._primary_id: Optional[str] = None
        self._is_loading = False
        self._error: Optional[str] = None
        self._is_initialized = False

    # ------------------------------------------------------------------
    # Invariant maintenance
    # ------------------------------------------------------------------

    def _assign_primary(self, contact_id: Optional[str]) -> None:
        """Make *contact_id* the only primary contact (``None`` clears the slot)."""
        if contact_id is not None and contact_id not in self._contacts:
            contact_id = None
        for cid, contact in self._contacts.items():
            flag = cid == contact_id
            if contact.is_primary != flag:
                self._contacts[cid] = replace(contact, is_primary=flag)
        self._primary_id = contact_id

    def _insert(self, contact: Contact) -> None:
        if contact.id not in self._contacts:
            self._order.append(contact.id)
        self._contacts[contact.id] = contact

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_contact(self, contact: Contact) -> Contact:
        """Insert *contact*; the first contact ever added becomes primary."""
        was_empty = not self._order
        replaced_primary = contact.id == self._primary_id
        self._insert(contact)
        if contact.is_primary or was_empty:
            self._assign_primary(contact.id)
        elif replaced_primary:
            self._assign_primary(None)
        return self._contacts[contact.id]

    def update_contact(self, contact_id: str, updates: Mapping[str, Any]) -> Optional[Contact]:
        """Merge *updates* into an existing contact. Unknown ids are ignored."""
        current = self._contacts.get(contact_id)
        if current is None:
            logger.debug("update_contact: unknown id %s", contact_id)
            return None

        updated = apply_updates(current, updates)
        self._contacts[contact_id] = updated
        if updated.is_primary:
            self._assign_primary(contact_id)
        elif self._primary_id == contact_id:
            # Demoted: the slot stays empty until a caller picks a new primary.
            self._assign_primary(None)
        return self._contacts[contact_id]

    def delete_contact(self, contact_id: str) -> bool:
        if contact_id not in self._contacts:
            return False
        del self._contacts[contact_id]
        self._order = [cid for cid in self._order if cid != contact_id]
        if self._primary_id == contact_id:
            self._assign_primary(None)
        return True

    def set_contacts(self, contacts: Iterable[Contact]) -> None:
        """Replace the whole collection and mark the store initialized.

        If several contacts are flagged primary, the first one wins (or
        :class:`AmbiguousPrimaryError` is raised in strict mode, leaving the
        current state untouched).
        """
        incoming = list(contacts)
        flagged: List[str] = []
        for contact in incoming:
            if contact.is_primary and contact.id not in flagged:
                flagged.append(contact.id)
        if len(flagged) > 1:
            if self.strict_primary:
                raise AmbiguousPrimaryError(flagged)
            logger.warning(
                "set_contacts: %d contacts flagged primary, keeping %s", len(flagged), flagged[0]
            )

        self._contacts = {}
        self._order = []
        for contact in incoming:
            self._insert(contact)
        self._assign_primary(flagged[0] if flagged else None)
        self._is_initialized = True

    def set_primary_contact(self, contact_id: str) -> Optional[Contact]:
        if contact_id not in self._contacts:
            logger.debug("set_primary_contact: unknown id %s", contact_id)
            return None
        self._assign_primary(contact_id)
        return self._contacts[contact_id]

    def clear(self) -> None:
        self._reset()

    def set_loading(self, is_loading: bool) -> None:
        self._is_loading = bool(is_loading)

    def set_error(self, error: Optional[str]) -> None:
        self._error = error

    def mark_initialized(self) -> None:
        self._is_initialized = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all_contacts(self) -> List[Contact]:
        return [self._contacts[cid] for cid in self._order if cid in self._contacts]

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self._contacts.get(contact_id)

    def contacts_by_category(self, category: ContactCategory | str) -> List[Contact]:
        category = ContactCategory(category)
        return [c for c in self.all_contacts() if c.category == category]

    def primary_contact(self) -> Optional[Contact]:
        if self._primary_id is None:
            return None
        return self._contacts.get(self._primary_id)

    def search(self, query: str) -> List[Contact]:
        """Filter by name/notes (case-insensitive) or phone substring."""
        if not query or not query.strip():
            return self.all_contacts()
        needle = query.strip().lower()
        return [
            c
            for c in self.all_contacts()
            if needle in c.name.lower()
            or query.strip() in c.phone
            or (c.notes is not None and needle in c.notes.lower())
        ]

    @property
    def order(self) -> List[str]:
        return list(self._order)

    @property
    def primary_contact_id(self) -> Optional[str]:
        return self._primary_id

    @property
    def count(self) -> int:
        return len(self._order)

    @property
    def has_primary(self) -> bool:
        return self._primary_id is not None

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy of the full state."""
        return {
            "contacts": dict(self._contacts),
            "order": list(self._order),
            "primary_contact_id": self._primary_id,
            "is_loading": self._is_loading,
            "error": self._error,
            "is_initialized": self._is_initialized,
        }

    def __len__(self) -> int:
        return self.count

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._contacts
