"""Tests for the in-memory contact store and its single-primary invariant."""

from __future__ import annotations

import pytest

from firstaid.contacts.errors import AmbiguousPrimaryError
from firstaid.contacts.models import ContactCategory
from firstaid.contacts.store import ContactStore

from conftest import assert_single_primary, make_contact


# ===================================================================
# 1. add_contact
# ===================================================================

class TestAddContact:
    def test_initial_state(self, store):
        assert store.snapshot() == {
            "contacts": {},
            "order": [],
            "primary_contact_id": None,
            "is_loading": False,
            "error": None,
            "is_initialized": False,
        }

    def test_add_appends_in_order(self, store):
        store.add_contact(make_contact(id="a"))
        store.add_contact(make_contact(id="b"))
        assert store.order == ["a", "b"]
        assert [c.id for c in store.all_contacts()] == ["a", "b"]

    def test_first_contact_becomes_primary(self, store):
        store.add_contact(make_contact(id="c1", is_primary=False))
        assert store.get_contact("c1").is_primary is True
        assert store.primary_contact_id == "c1"

    def test_second_non_primary_does_not_steal(self, store):
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c2"))
        assert store.primary_contact_id == "c1"
        assert store.get_contact("c2").is_primary is False

    def test_new_primary_demotes_previous(self, store):
        store.add_contact(make_contact(id="c1", is_primary=True))
        store.add_contact(make_contact(id="c2", is_primary=True))
        assert store.get_contact("c1").is_primary is False
        assert store.get_contact("c2").is_primary is True
        assert store.primary_contact_id == "c2"
        assert_single_primary(store)

    def test_readding_same_id_does_not_duplicate_order(self, store):
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c1", name="Renamed"))
        assert store.order == ["c1"]
        assert store.get_contact("c1").name == "Renamed"

    def test_caller_instance_is_not_mutated(self, store):
        original = make_contact(id="c1", is_primary=False)
        store.add_contact(original)
        assert original.is_primary is False


# ===================================================================
# 2. update_contact
# ===================================================================

class TestUpdateContact:
    def test_merges_fields_and_refreshes_updated_at(self, store):
        contact = make_contact(id="c1")
        store.add_contact(contact)
        updated = store.update_contact("c1", {"name": "Jane Doe", "phone": "+0987654321"})
        assert updated.name == "Jane Doe"
        assert updated.phone == "+0987654321"
        assert updated.updated_at > contact.updated_at
        assert updated.created_at == contact.created_at

    def test_accepts_camel_case_primary_flag(self, store):
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c2"))
        store.update_contact("c2", {"isPrimary": True})
        assert store.primary_contact_id == "c2"
        assert store.get_contact("c1").is_primary is False

    def test_promote_demotes_others(self, store):
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c2"))
        store.update_contact("c2", {"is_primary": True})
        assert store.get_contact("c2").is_primary is True
        assert store.get_contact("c1").is_primary is False
        assert_single_primary(store)

    def test_demoting_primary_leaves_slot_empty(self, store):
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c2"))
        store.update_contact("c1", {"is_primary": False})
        assert store.primary_contact_id is None
        assert store.get_contact("c2").is_primary is False
        assert store.has_primary is False

    def test_unknown_id_is_noop(self, store):
        store.add_contact(make_contact(id="c1"))
        before = store.snapshot()
        assert store.update_contact("missing", {"name": "X"}) is None
        assert store.snapshot() == before

    def test_identity_fields_are_ignored(self, store):
        store.add_contact(make_contact(id="c1"))
        updated = store.update_contact("c1", {"id": "other", "user_id": "u9", "name": "New"})
        assert updated.id == "c1"
        assert updated.user_id == "user_1"
        assert updated.name == "New"


# ===================================================================
# 3. delete_contact / set_primary_contact / clear
# ===================================================================

class TestDeleteAndPrimary:
    def test_delete_removes_contact(self, store):
        store.add_contact(make_contact(id="c1"))
        assert store.delete_contact("c1") is True
        assert store.get_contact("c1") is None
        assert "c1" not in store.order

    def test_delete_unknown_returns_false(self, store):
        assert store.delete_contact("nope") is False

    def test_delete_primary_does_not_reassign(self, store):
        store.add_contact(make_contact(id="c1", is_primary=True))
        store.add_contact(make_contact(id="c2", is_primary=True))
        store.delete_contact("c2")
        assert store.primary_contact_id is None
        assert store.get_contact("c1").is_primary is False
        assert store.primary_contact() is None

    def test_set_primary_contact(self, store):
        store.add_contact(make_contact(id="c1", is_primary=True))
        store.add_contact(make_contact(id="c2"))
        store.set_primary_contact("c2")
        assert store.get_contact("c1").is_primary is False
        assert store.get_contact("c2").is_primary is True
        assert store.primary_contact().id == "c2"

    def test_set_primary_unknown_is_noop(self, store):
        store.add_contact(make_contact(id="c1"))
        assert store.set_primary_contact("ghost") is None
        assert store.primary_contact_id == "c1"

    def test_clear_resets_everything(self, store):
        store.add_contact(make_contact(id="c1"))
        store.set_error("boom")
        store.mark_initialized()
        store.clear()
        assert store.snapshot() == ContactStore().snapshot()


# ===================================================================
# 4. set_contacts
# ===================================================================

class TestSetContacts:
    def test_bulk_replace(self, store):
        store.add_contact(make_contact(id="old"))
        store.set_contacts([
            make_contact(id="c1"),
            make_contact(id="c2", is_primary=True),
            make_contact(id="c3"),
        ])
        assert store.order == ["c1", "c2", "c3"]
        assert store.primary_contact_id == "c2"
        assert store.is_initialized is True
        assert "old" not in store

    def test_no_primary_stays_empty(self, store):
        store.set_contacts([make_contact(id="c1"), make_contact(id="c2")])
        assert store.primary_contact_id is None

    def test_multiple_primaries_first_wins(self, store):
        store.set_contacts([
            make_contact(id="c1", is_primary=True),
            make_contact(id="c2", is_primary=True),
        ])
        assert store.primary_contact_id == "c1"
        assert store.get_contact("c2").is_primary is False
        assert_single_primary(store)

    def test_multiple_primaries_rejected_in_strict_mode(self):
        store = ContactStore(strict_primary=True)
        store.add_contact(make_contact(id="keep"))
        with pytest.raises(AmbiguousPrimaryError) as exc_info:
            store.set_contacts([
                make_contact(id="c1", is_primary=True),
                make_contact(id="c2", is_primary=True),
            ])
        assert exc_info.value.contact_ids == ["c1", "c2"]
        assert store.order == ["keep"]

    def test_idempotent(self, store):
        contacts = [
            make_contact(id="c1", is_primary=True),
            make_contact(id="c2", is_primary=True),
            make_contact(id="c3"),
        ]
        store.set_contacts(contacts)
        once = store.snapshot()
        store.set_contacts(contacts)
        assert store.snapshot() == once


# ===================================================================
# 5. Queries
# ===================================================================

class TestQueries:
    def test_counts_and_flags(self, store):
        assert store.count == 0
        assert store.has_primary is False
        store.add_contact(make_contact(id="c1"))
        store.add_contact(make_contact(id="c2"))
        assert store.count == 2
        assert len(store) == 2
        assert store.has_primary is True

    def test_by_category(self, store):
        store.add_contact(make_contact(id="c1", category=ContactCategory.FAMILY))
        store.add_contact(make_contact(id="c2", category=ContactCategory.MEDICAL))
        store.add_contact(make_contact(id="c3", category="medical"))
        assert [c.id for c in store.contacts_by_category("medical")] == ["c2", "c3"]
        assert [c.id for c in store.contacts_by_category(ContactCategory.WORK)] == []

    def test_search(self, store):
        store.add_contact(make_contact(id="c1", name="Ana Kovač", phone="+385111", notes=None))
        store.add_contact(make_contact(id="c2", name="Dr. Horvat", phone="+385222", notes="Cardiologist"))
        assert [c.id for c in store.search("ana")] == ["c1"]
        assert [c.id for c in store.search("222")] == ["c2"]
        assert [c.id for c in store.search("CARDIO")] == ["c2"]
        assert len(store.search("   ")) == 2

    def test_invariant_across_mixed_operations(self, store):
        store.add_contact(make_contact(id="a"))
        assert_single_primary(store)
        store.add_contact(make_contact(id="b", is_primary=True))
        assert_single_primary(store)
        store.update_contact("a", {"is_primary": True})
        assert_single_primary(store)
        store.update_contact("a", {"is_primary": False})
        assert_single_primary(store)
        store.set_primary_contact("b")
        assert_single_primary(store)
        store.delete_contact("b")
        assert_single_primary(store)
        store.add_contact(make_contact(id="c"))
        assert_single_primary(store)
        assert store.primary_contact_id is None
