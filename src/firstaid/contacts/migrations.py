"""Versioned migrations for persisted contact records.

Each migration is a pure transform keyed by its target version number.
:meth:`MigrationRunner.run_migrations` applies outstanding transforms in
order; :meth:`MigrationRunner.migrate_user_storage` upgrades a user's record
in place, writing back only once every step has succeeded and recording
history only after the write-back lands.

Usage::

    runner = MigrationRunner(backend)
    await runner.migrate_user_storage("user_1")
    runner.latest_version  # → 3
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from firstaid.contacts.backends import KeyValueBackend
from firstaid.contacts.errors import MigrationError
from firstaid.contacts.models import parse_timestamp, utcnow
from firstaid.contacts.storage import StorageKeys

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    migrate: Callable[[Record], Record]


# -----------------------------------------------------------------------
# Default registry
# -----------------------------------------------------------------------

def _initial_schema(data: Record) -> Record:
    return data


def _backfill_enum_defaults(data: Record) -> Record:
    contacts = []
    for contact in data.get("contacts") or []:
        contact = dict(contact)
        contact.setdefault("category", "other")
        contact.setdefault("relationship", "other")
        contact.setdefault("isPrimary", False)
        contacts.append(contact)
    return {**data, "contacts": contacts}


def _iso_timestamps(data: Record) -> Record:
    contacts = []
    for contact in data.get("contacts") or []:
        contact = dict(contact)
        for name in ("createdAt", "updatedAt"):
            value = contact.get(name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                contact[name] = parse_timestamp(value).isoformat()
        contacts.append(contact)
    return {**data, "contacts": contacts}


MIGRATIONS: List[Migration] = [
    Migration(1, "Initial schema - no migration needed", _initial_schema),
    Migration(2, "Backfill category, relationship and isPrimary defaults", _backfill_enum_defaults),
    Migration(3, "Convert epoch-millisecond timestamps to ISO-8601", _iso_timestamps),
]


# -----------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------

class MigrationRunner:
    """Applies registered migrations and keeps the migration history."""

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        keys: Optional[StorageKeys] = None,
        migrations: Optional[Iterable[Migration]] = None,
    ) -> None:
        self.backend = backend
        self.keys = keys or StorageKeys()
        self._migrations: List[Migration] = []
        for migration in MIGRATIONS if migrations is None else migrations:
            self.register(migration)

    @property
    def migrations(self) -> List[Migration]:
        return list(self._migrations)

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def register(self, migration: Migration) -> None:
        """Append *migration*; versions must be strictly increasing."""
        if migration.version <= self.latest_version:
            raise ValueError(
                f"Migration version {migration.version} must be greater than {self.latest_version}"
            )
        self._migrations.append(migration)

    @staticmethod
    def is_migration_needed(current_version: int, target_version: int) -> bool:
        return current_version < target_version

    async def run_migrations(self, data: Record, from_version: int, to_version: int) -> Record:
        """Apply every migration with ``from_version < version <= to_version``.

        Raises :class:`MigrationError` carrying the failing version; the
        input is never mutated. History entries are appended only once every
        step has succeeded.
        """
        migrated, applied = self._apply_pending(data, from_version, to_version)
        await self._record_migrations(applied)
        return migrated

    def _apply_pending(self, data: Record, from_version: int, to_version: int) -> Tuple[Record, List[Migration]]:
        migrated = copy.deepcopy(data)
        if to_version <= from_version:
            return migrated, []

        pending = sorted(
            (m for m in self._migrations if from_version < m.version <= to_version),
            key=lambda m: m.version,
        )
        for migration in pending:
            logger.info("[migrate] Running migration v%d: %s", migration.version, migration.description)
            try:
                migrated = migration.migrate(migrated)
            except Exception as e:
                logger.error("[migrate] Migration v%d failed: %s", migration.version, e)
                raise MigrationError(migration.version, e) from e

        migrated["version"] = to_version
        return migrated, pending

    async def migrate_user_storage(self, user_id: str, target_version: Optional[int] = None) -> bool:
        """Upgrade the stored record for *user_id*.

        Returns ``True`` when a migration ran. Missing or undecodable records
        are left untouched for the gateway to report.
        """
        target = self.latest_version if target_version is None else target_version
        key = self.keys.user(user_id)
        raw = await self.backend.get_item(key)
        if not raw:
            return False

        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("[migrate] Record for %s is not valid JSON, skipping: %s", user_id, e)
            return False
        if not isinstance(record, dict):
            logger.warning("[migrate] Record for %s is not an object, skipping", user_id)
            return False

        current = record.get("version") or 0
        if not isinstance(current, int) or isinstance(current, bool):
            logger.warning("[migrate] Record for %s has invalid version %r, skipping", user_id, current)
            return False
        if not self.is_migration_needed(current, target):
            logger.debug("[migrate] Record for %s already at v%d, nothing to do.", user_id, current)
            return False

        migrated, applied = self._apply_pending(record, current, target)
        try:
            await self.backend.set_item(key, json.dumps(migrated, ensure_ascii=False))
            await self.backend.set_item(self.keys.version, str(target))
        except OSError as e:
            raise MigrationError(target, e) from e
        await self._record_migrations(applied)
        logger.info("[migrate] Record for %s upgraded v%d → v%d", user_id, current, target)
        return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def _record_migrations(self, migrations: List[Migration]) -> None:
        if not migrations:
            return
        try:
            history = await self.get_migration_history()
            executed_at = utcnow().isoformat()
            history.extend(
                {
                    "version": migration.version,
                    "description": migration.description,
                    "executedAt": executed_at,
                }
                for migration in migrations
            )
            await self.backend.set_item(self.keys.migration_history, json.dumps(history))
        except Exception as e:
            logger.warning("[migrate] Failed to record migration history: %s", e)

    async def get_migration_history(self) -> List[Record]:
        try:
            raw = await self.backend.get_item(self.keys.migration_history)
            history = json.loads(raw) if raw else []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("[migrate] Failed to get migration history: %s", e)
            return []
        return history if isinstance(history, list) else []

    async def clear_migration_history(self) -> None:
        await self.backend.remove_item(self.keys.migration_history)

    async def get_version_info(self) -> Dict[str, Any]:
        try:
            raw = await self.backend.get_item(self.keys.version)
            current = int(raw) if raw else None
        except (OSError, ValueError) as e:
            logger.warning("[migrate] Failed to get version info: %s", e)
            current = None
        return {
            "currentVersion": current,
            "targetVersion": self.latest_version,
            "needsMigration": current is not None and current < self.latest_version,
        }
