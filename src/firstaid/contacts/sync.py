"""Sync orchestrator: couples the in-memory store with durable storage.

Every ``*_with_storage`` call applies its store mutation immediately
(optimistic update), then writes the full contact list. Writes for the same
user are serialized through an :class:`asyncio.Lock` and the snapshot is
taken only once the lock is held, so the last record committed to storage
always matches the last mutation applied in memory.

A failed save is retried with backoff; if it still fails the error lands
in ``store.error`` and on the returned :class:`WriteResult`, and the
in-memory change stays applied (at-least-once, eventually consistent).

No public method raises.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from firstaid.config import DEFAULT_SAVE_RETRY_DELAYS, DEFAULT_STORAGE_TIMEOUT_S
from firstaid.contacts.errors import ContactsError, MigrationError, StorageWriteError
from firstaid.contacts.migrations import MigrationRunner
from firstaid.contacts.models import Contact, new_contact, normalize_updates, utcnow
from firstaid.contacts.storage import ContactsStorage
from firstaid.contacts.store import ContactStore

logger = logging.getLogger(__name__)

__all__ = ["ContactsSync", "WriteResult", "WriteStatus"]

MAX_TRACKED_WRITES = 256

Mutation = Callable[[], Any]


class WriteStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class WriteResult:
    """Outcome of one mutation's durable write."""

    mutation_id: str
    kind: str
    user_id: str
    status: WriteStatus = WriteStatus.PENDING
    contact: Optional[Contact] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return self.status == WriteStatus.COMMITTED


class ContactsSync:
    """Orchestrates store mutations, migrations and storage writes.

    Parameters
    ----------
    store:
        The single in-memory writer of contact state.
    storage:
        Persistence gateway.
    migrations:
        Runner invoked before every load.
    timeout_s:
        Upper bound for each storage call.
    retry_delays:
        Sleep before each save retry; ``()`` disables retries.
    """

    def __init__(
        self,
        store: ContactStore,
        storage: ContactsStorage,
        migrations: MigrationRunner,
        *,
        timeout_s: float = DEFAULT_STORAGE_TIMEOUT_S,
        retry_delays: Sequence[float] = DEFAULT_SAVE_RETRY_DELAYS,
    ) -> None:
        self.store = store
        self.storage = storage
        self.migrations = migrations
        self.timeout_s = timeout_s
        self.retry_delays = tuple(retry_delays)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._writes: "OrderedDict[str, WriteResult]" = OrderedDict()
        # user_id -> one replay buffer per load in flight
        self._replays: Dict[str, List[List[Mutation]]] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _apply(self, user_id: str, mutate: Mutation) -> None:
        """Apply *mutate* now and queue it for every load still in flight."""
        mutate()
        for buffer in self._replays.get(user_id, ()):
            buffer.append(mutate)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load_from_storage(self, user_id: str) -> List[Contact]:
        """Migrate, load and ingest the user's contacts.

        Always leaves ``is_loading`` false and ``is_initialized`` true.
        On failure the store keeps whatever it already held. Mutations made
        while the load was in flight are replayed on top of the loaded list,
        so the saves queued behind the load persist them.
        """
        self.store.set_loading(True)
        self.store.set_error(None)
        replay: List[Mutation] = []
        self._replays.setdefault(user_id, []).append(replay)
        try:
            async with self._lock_for(user_id):
                await asyncio.wait_for(self.migrations.migrate_user_storage(user_id), self.timeout_s)
                contacts = await asyncio.wait_for(self.storage.load(user_id), self.timeout_s)
                self.store.set_contacts(contacts)
                if replay:
                    logger.info("[sync] Replaying %d mutations made during load for %s", len(replay), user_id)
                for mutate in replay:
                    mutate()
            logger.info("[sync] Loaded %d contacts for %s", len(contacts), user_id)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error("[sync] Loading contacts for %s timed out after %ss", user_id, self.timeout_s)
            self.store.set_error(f"Timed out loading contacts after {self.timeout_s}s")
        except MigrationError as e:
            logger.error("[sync] Migration failed for %s: %s", user_id, e)
            self.store.set_error(str(e))
        except ContactsError as e:
            logger.error("[sync] Failed to load contacts for %s: %s", user_id, e)
            self.store.set_error(str(e))
        except Exception as e:
            logger.exception("[sync] Unexpected error loading contacts for %s", user_id)
            self.store.set_error(str(e) or "Failed to load contacts")
        finally:
            buffers = [b for b in self._replays.get(user_id, []) if b is not replay]
            if buffers:
                self._replays[user_id] = buffers
            else:
                self._replays.pop(user_id, None)
            self.store.set_loading(False)
            self.store.mark_initialized()
        return self.store.all_contacts()

    refresh = load_from_storage

    # ------------------------------------------------------------------
    # Mutations with storage
    # ------------------------------------------------------------------

    async def add_with_storage(self, user_id: str, contact: Mapping[str, Any]) -> WriteResult:
        """Create a contact from *contact* fields (no id/timestamps) and persist.

        Field values are not validated here; an unusable enum value fails the
        result without touching the store.
        """
        result = self._begin("add", user_id)
        try:
            fields = normalize_updates(contact)
            created = new_contact(
                user_id=user_id,
                name=fields.get("name", ""),
                phone=fields.get("phone", ""),
                relationship=fields.get("relationship", "other"),
                category=fields.get("category", "other"),
                is_primary=fields.get("is_primary", False),
                notes=fields.get("notes"),
            )
        except ValueError as e:
            return self._fail(result, f"Failed to add contact: {e}")

        def mutate() -> None:
            result.contact = self.store.add_contact(created)

        self._apply(user_id, mutate)
        return await self._persist(result)

    async def update_with_storage(self, user_id: str, contact_id: str, updates: Mapping[str, Any]) -> WriteResult:
        result = self._begin("update", user_id)
        updates = dict(updates)

        def mutate() -> None:
            result.contact = self.store.update_contact(contact_id, updates)

        try:
            self._apply(user_id, mutate)
        except ValueError as e:
            return self._fail(result, f"Failed to update contact: {e}")
        return await self._persist(result)

    async def delete_with_storage(self, user_id: str, contact_id: str) -> WriteResult:
        result = self._begin("delete", user_id)
        self._apply(user_id, lambda: self.store.delete_contact(contact_id))
        return await self._persist(result)

    async def set_primary_with_storage(self, user_id: str, contact_id: str) -> WriteResult:
        result = self._begin("set_primary", user_id)

        def mutate() -> None:
            result.contact = self.store.set_primary_contact(contact_id)

        self._apply(user_id, mutate)
        return await self._persist(result)

    async def sync_to_storage(self, user_id: str) -> WriteResult:
        """Write the current list without mutating anything."""
        return await self._persist(self._begin("sync", user_id))

    # ------------------------------------------------------------------
    # Write status
    # ------------------------------------------------------------------

    def write_status(self, mutation_id: str) -> Optional[WriteStatus]:
        result = self._writes.get(mutation_id)
        return result.status if result else None

    def pending_writes(self, user_id: str) -> List[WriteResult]:
        return [
            w for w in self._writes.values()
            if w.user_id == user_id and w.status == WriteStatus.PENDING
        ]

    def has_unsaved_changes(self, user_id: str) -> bool:
        """True while a write is pending or the latest finished write failed."""
        last_finished: Optional[WriteResult] = None
        for w in self._writes.values():
            if w.user_id != user_id:
                continue
            if w.status == WriteStatus.PENDING:
                return True
            last_finished = w
        return last_finished is not None and last_finished.status == WriteStatus.FAILED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin(self, kind: str, user_id: str) -> WriteResult:
        self.store.set_error(None)
        result = WriteResult(mutation_id=uuid.uuid4().hex, kind=kind, user_id=user_id)
        self._writes[result.mutation_id] = result
        while len(self._writes) > MAX_TRACKED_WRITES:
            oldest_id = next(
                (mid for mid, w in self._writes.items() if w.status != WriteStatus.PENDING),
                None,
            )
            if oldest_id is None:
                break
            del self._writes[oldest_id]
        return result

    def _fail(self, result: WriteResult, error: str) -> WriteResult:
        logger.warning("[sync] %s for %s failed: %s", result.kind, result.user_id, error)
        result.status = WriteStatus.FAILED
        result.error = error
        self.store.set_error(error)
        return result

    async def _persist(self, result: WriteResult) -> WriteResult:
        try:
            async with self._lock_for(result.user_id):
                error = await self._save_with_retry(result.user_id)
        except asyncio.CancelledError:
            self._fail(result, "Save cancelled")
            raise
        if error is not None:
            return self._fail(result, error)
        result.status = WriteStatus.COMMITTED
        return result

    async def _save_with_retry(self, user_id: str) -> Optional[str]:
        """Save the current snapshot; return the last error, or ``None``."""
        attempts = len(self.retry_delays) + 1
        last_error: Optional[str] = None
        for attempt in range(attempts):
            try:
                await asyncio.wait_for(
                    self.storage.save(self.store.all_contacts(), user_id),
                    timeout=self.timeout_s,
                )
                return None
            except asyncio.TimeoutError:
                last_error = f"Timed out saving contacts after {self.timeout_s}s"
            except StorageWriteError as e:
                last_error = str(e)
            except Exception as e:
                logger.exception("[sync] Unexpected error saving contacts for %s", user_id)
                last_error = str(e) or "Failed to save contacts"

            if attempt < attempts - 1:
                delay = self.retry_delays[attempt]
                logger.warning(
                    "[sync] Save for %s failed (%s), retry %d/%d in %.1fs",
                    user_id, last_error, attempt + 1, attempts - 1, delay,
                )
                await asyncio.sleep(delay)
        return last_error
