from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from firstaid.contacts.backends import MemoryBackend
from firstaid.contacts.migrations import MigrationRunner
from firstaid.contacts.models import Contact, ContactCategory, ContactRelationship
from firstaid.contacts.storage import ContactsStorage
from firstaid.contacts.store import ContactStore
from firstaid.contacts.sync import ContactsSync


def make_contact(**overrides: Any) -> Contact:
    fields: dict[str, Any] = dict(
        id="contact_1",
        user_id="user_1",
        name="John Doe",
        phone="+1234567890",
        relationship=ContactRelationship.SPOUSE,
        category=ContactCategory.FAMILY,
        is_primary=False,
        notes="Test notes",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return Contact(**fields)


def assert_single_primary(store: ContactStore) -> None:
    flagged = [c.id for c in store.all_contacts() if c.is_primary]
    assert len(flagged) <= 1
    if flagged:
        assert store.primary_contact_id == flagged[0]
    else:
        assert store.primary_contact_id is None


class FlakyBackend(MemoryBackend):
    """Memory backend whose writes fail a configurable number of times."""

    def __init__(self, fail_writes: int = 0) -> None:
        super().__init__()
        self.fail_writes = fail_writes
        self.write_attempts = 0

    async def set_item(self, key: str, value: str) -> None:
        self.write_attempts += 1
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise OSError("disk full")
        await super().set_item(key, value)


class GatedBackend(MemoryBackend):
    """Memory backend whose next user-record write blocks until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate: Optional[asyncio.Event] = None
        self.records: list[str] = []

    async def set_item(self, key: str, value: str) -> None:
        if key.endswith(":version"):
            await super().set_item(key, value)
            return
        if self.gate is not None:
            gate, self.gate = self.gate, None
            await gate.wait()
        self.records.append(value)
        await super().set_item(key, value)


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def runner(backend) -> MigrationRunner:
    return MigrationRunner(backend)


@pytest.fixture()
def storage(backend, runner) -> ContactsStorage:
    return ContactsStorage(backend, schema_version=runner.latest_version)


@pytest.fixture()
def store() -> ContactStore:
    return ContactStore()


@pytest.fixture()
def sync(store, storage, runner) -> ContactsSync:
    return ContactsSync(store, storage, runner, timeout_s=1.0, retry_delays=())
