from __future__ import annotations

import unittest

from grimoire.document_store import InMemoryDocumentStore
from grimoire.errors import InvalidArgument, NotFound, ResourceExhausted, Unauthenticated
from grimoire.plan_catalog import PlanDetails, plan_document_path, resolve_plan_details
from grimoire.usage_ledger import UsageLedger, usage_document_path
from grimoire.user_service import (
    add_journal_entry,
    add_to_collection,
    delete_user_account,
    get_user_profile,
    initialize_user_document,
    list_owned_crystal_names,
    merge_user_profile,
    update_user_profile,
    user_document_path,
)


class TestMergeUserProfile(unittest.TestCase):
    def test_existing_values_win_unless_absent(self) -> None:
        existing = {"displayName": "Luna", "photoURL": "", "settings": {"darkMode": False}}
        incoming = {"displayName": "Crystal Seeker", "photoURL": "p.png", "settings": {"darkMode": True, "newsletter": True}}
        merged = merge_user_profile(existing, incoming)
        self.assertEqual(merged["displayName"], "Luna")
        self.assertEqual(merged["photoURL"], "p.png")
        self.assertEqual(merged["settings"], {"darkMode": False, "newsletter": True})
        self.assertEqual(existing["photoURL"], "")

    def test_non_mappings(self) -> None:
        self.assertEqual(merge_user_profile(None, {"a": 1}), {"a": 1})
        self.assertEqual(merge_user_profile({"a": 1}, "junk"), {"a": 1})


class TestUserDocuments(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()

    def test_initialize_creates_user_and_plan(self) -> None:
        document = initialize_user_document(self.store, "u1", {"email": "a@b.c", "displayName": "Luna"})
        self.assertEqual(document["profile"]["displayName"], "Luna")
        self.assertEqual(self.store.get(user_document_path("u1"))["email"], "a@b.c")
        self.assertEqual(self.store.get(plan_document_path("u1"))["plan"], "free")

    def test_initialize_keeps_existing_profile_and_plan(self) -> None:
        self.store.set(user_document_path("u1"), {"profile": {"displayName": "Luna"}, "settings": {"darkMode": False}})
        self.store.set(plan_document_path("u1"), {"plan": "pro", "provider": "stripe"})
        document = initialize_user_document(self.store, "u1", {"displayName": "Other"})
        self.assertEqual(document["profile"]["displayName"], "Luna")
        self.assertFalse(document["settings"]["darkMode"])
        self.assertTrue(document["settings"]["newsletter"])
        self.assertEqual(self.store.get(plan_document_path("u1"))["plan"], "pro")

    def test_initialize_requires_user(self) -> None:
        with self.assertRaises(Unauthenticated):
            initialize_user_document(self.store, "")

    def test_get_profile_hides_internal_fields(self) -> None:
        self.store.set(user_document_path("u1"), {"profile": {}, "internalNotes": "x"})
        self.assertNotIn("internalNotes", get_user_profile(self.store, "u1"))
        with self.assertRaises(NotFound):
            get_user_profile(self.store, "ghost")

    def test_update_profile_whitelists_fields(self) -> None:
        initialize_user_document(self.store, "u1")
        result = update_user_profile(
            self.store, "u1", {"displayName": "Nova", "settings": {"darkMode": False}, "isAdmin": True}
        )
        self.assertEqual(result["updated"], ["displayName", "settings"])
        stored = self.store.get(user_document_path("u1"))
        self.assertEqual(stored["profile"]["displayName"], "Nova")
        self.assertEqual(stored["settings"], {"darkMode": False})
        self.assertNotIn("isAdmin", stored)

    def test_update_profile_edge_cases(self) -> None:
        self.assertEqual(update_user_profile(self.store, "u1", {"isAdmin": True})["message"], "No valid updates provided")
        with self.assertRaises(NotFound):
            update_user_profile(self.store, "u1", {"displayName": "Nova"})
        with self.assertRaises(InvalidArgument):
            update_user_profile(self.store, "u1", ["displayName"])


class TestCollectionAndJournal(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()
        self.plan = resolve_plan_details("free")

    def test_collection_entries_link_to_catalog(self) -> None:
        entry = add_to_collection(self.store, "u1", self.plan, "purple quartz", notes="gift")
        self.assertEqual((entry["name"], entry["catalogId"]), ("Amethyst", "amethyst"))
        other = add_to_collection(self.store, "u1", self.plan, "Moldavite")
        self.assertIsNone(other["catalogId"])
        self.assertEqual(sorted(list_owned_crystal_names(self.store, "u1")), ["Amethyst", "Moldavite"])

    def test_collection_cap(self) -> None:
        tiny = PlanDetails(plan="free", tier="free", effective_limits={"collectionMax": 1})
        add_to_collection(self.store, "u1", tiny, "Citrine")
        with self.assertRaises(ResourceExhausted):
            add_to_collection(self.store, "u1", tiny, "Hematite")

    def test_journal_entry(self) -> None:
        entry = add_journal_entry(self.store, "u1", self.plan, "  Felt calm today ", mood="calm", crystals=["Amethyst"])
        self.assertEqual(entry["content"], "Felt calm today")
        with self.assertRaises(InvalidArgument):
            add_journal_entry(self.store, "u1", self.plan, " ")


class TestDeleteAccount(unittest.TestCase):
    def test_removes_everything_owned_by_user(self) -> None:
        store = InMemoryDocumentStore()
        initialize_user_document(store, "u1")
        initialize_user_document(store, "u2")
        plan = resolve_plan_details("free")
        add_to_collection(store, "u1", plan, "Citrine")
        add_journal_entry(store, "u1", plan, "entry")
        UsageLedger(store).record_action("u1", "moon_ritual", 1)

        result = delete_user_account(store, "u1")

        self.assertEqual(result["deleted"]["collection"], 1)
        self.assertEqual(result["deleted"]["journal"], 1)
        self.assertEqual(result["deleted"]["plan"], 1)
        self.assertIsNone(store.get(user_document_path("u1")))
        self.assertIsNone(store.get(usage_document_path("u1")))
        self.assertIsNotNone(store.get(user_document_path("u2")))
        self.assertIsNotNone(store.get(plan_document_path("u2")))


if __name__ == "__main__":
    unittest.main()
