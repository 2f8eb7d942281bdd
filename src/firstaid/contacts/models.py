"""Emergency contact data model.

Defines :class:`Contact` plus the relationship / category enums, and the
conversion to and from the persisted camelCase JSON shape::

    {"id": ..., "userId": ..., "name": ..., "phone": ...,
     "relationship": "spouse", "category": "family", "isPrimary": false,
     "notes": "...", "createdAt": "2025-01-01T00:00:00+00:00",
     "updatedAt": "..."}
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class ContactRelationship(str, Enum):
    """Relationship of the contact to the user."""

    SPOUSE = "spouse"
    PARENT = "parent"
    CHILD = "child"
    SIBLING = "sibling"
    FRIEND = "friend"
    DOCTOR = "doctor"
    OTHER = "other"


class ContactCategory(str, Enum):
    """Grouping used by the contact list screens."""

    FAMILY = "family"
    MEDICAL = "medical"
    WORK = "work"
    OTHER = "other"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Accept a datetime, an ISO-8601 string or epoch milliseconds."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def generate_contact_id() -> str:
    """``contact_<epoch-ms>_<9 hex chars>``."""
    return f"contact_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Contact:
    """A single emergency contact.

    Instances are immutable; the store derives new instances with
    :func:`dataclasses.replace` so callers holding a reference never see
    the primary flag change underneath them.
    """

    id: str
    user_id: str
    name: str
    phone: str
    relationship: ContactRelationship = ContactRelationship.OTHER
    category: ContactCategory = ContactCategory.OTHER
    is_primary: bool = False
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.relationship, ContactRelationship):
            object.__setattr__(self, "relationship", ContactRelationship(self.relationship))
        if not isinstance(self.category, ContactCategory):
            object.__setattr__(self, "category", ContactCategory(self.category))
        object.__setattr__(self, "is_primary", bool(self.is_primary))
        object.__setattr__(self, "notes", self.notes or None)
        object.__setattr__(self, "created_at", parse_timestamp(self.created_at))
        object.__setattr__(self, "updated_at", parse_timestamp(self.updated_at))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "phone": self.phone,
            "relationship": self.relationship.value,
            "category": self.category.value,
            "isPrimary": self.is_primary,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.notes:
            out["notes"] = self.notes
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Contact":
        """Build a contact from its persisted shape.

        Raises ``KeyError``/``ValueError``/``TypeError`` on malformed input;
        the storage gateway maps those to :class:`StorageReadError`.
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"Contact record must be an object, got {type(data).__name__}")
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            name=str(data["name"]),
            phone=str(data["phone"]),
            relationship=data.get("relationship", ContactRelationship.OTHER),
            category=data.get("category", ContactCategory.OTHER),
            is_primary=bool(data.get("isPrimary", False)),
            notes=data.get("notes") or None,
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
        )


def new_contact(
    *,
    user_id: str,
    name: str,
    phone: str,
    relationship: ContactRelationship | str = ContactRelationship.OTHER,
    category: ContactCategory | str = ContactCategory.OTHER,
    is_primary: bool = False,
    notes: Optional[str] = None,
) -> Contact:
    """Create a contact with a generated id and fresh timestamps."""
    now = utcnow()
    return Contact(
        id=generate_contact_id(),
        user_id=user_id,
        name=name,
        phone=phone,
        relationship=relationship,
        category=category,
        is_primary=is_primary,
        notes=notes,
        created_at=now,
        updated_at=now,
    )


# Update payloads may use attribute names or the persisted camelCase keys.
UPDATABLE_FIELDS = frozenset({"name", "phone", "relationship", "category", "is_primary", "notes"})
_FIELD_ALIASES = {"isPrimary": "is_primary"}


def normalize_updates(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Map an update payload onto :data:`UPDATABLE_FIELDS`.

    Identity and timestamp fields are owned by the store and dropped here.
    """
    out: Dict[str, Any] = {}
    for key, value in updates.items():
        name = _FIELD_ALIASES.get(key, key)
        if name not in UPDATABLE_FIELDS:
            logger.warning("Ignoring non-updatable contact field %r", key)
            continue
        out[name] = value
    if "is_primary" in out:
        out["is_primary"] = bool(out["is_primary"])
    return out


def apply_updates(contact: Contact, updates: Mapping[str, Any], *, now: Optional[datetime] = None) -> Contact:
    """Return a copy of *contact* with *updates* merged and ``updated_at`` refreshed."""
    return replace(contact, **normalize_updates(updates), updated_at=now or utcnow())
