"""Composition root for the emergency contacts core.

Usage::

    sync = build_contacts_sync()                  # FIRSTAID_* env config
    await sync.load_from_storage("user_1")
    result = await sync.add_with_storage("user_1", {"name": "Ana", "phone": "+3851234"})
    sync.store.primary_contact()
"""

from __future__ import annotations

import logging
from typing import Optional

from firstaid.config import ContactsConfig
from firstaid.contacts.backends import JsonFileBackend, KeyValueBackend
from firstaid.contacts.crypto import FieldCipher
from firstaid.contacts.migrations import MigrationRunner
from firstaid.contacts.storage import ContactsStorage, StorageKeys
from firstaid.contacts.store import ContactStore
from firstaid.contacts.sync import ContactsSync

logger = logging.getLogger(__name__)


def build_contacts_sync(
    config: Optional[ContactsConfig] = None,
    *,
    backend: Optional[KeyValueBackend] = None,
    cipher: Optional[FieldCipher] = None,
) -> ContactsSync:
    """Wire backend, cipher, gateway, migrations, store and orchestrator.

    *backend* defaults to a :class:`JsonFileBackend` under
    ``config.storage_dir``; *cipher* defaults to the key at
    ``config.key_path`` when ``config.encrypt_fields`` is set.
    """
    config = config or ContactsConfig.from_env()
    keys = StorageKeys(config.namespace)

    if backend is None:
        backend = JsonFileBackend(config.storage_dir)
    if cipher is None and config.encrypt_fields:
        cipher = FieldCipher.from_key_file(config.key_path)

    migrations = MigrationRunner(backend, keys=keys)
    storage = ContactsStorage(
        backend,
        schema_version=migrations.latest_version,
        keys=keys,
        cipher=cipher,
    )
    store = ContactStore(strict_primary=config.strict_primary)
    logger.debug(
        "Contacts core ready (namespace=%s, schema v%d, encrypted=%s)",
        keys.namespace, migrations.latest_version, cipher is not None,
    )
    return ContactsSync(
        store,
        storage,
        migrations,
        timeout_s=config.storage_timeout_s,
        retry_delays=config.save_retry_delays,
    )
