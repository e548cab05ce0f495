from __future__ import annotations

import unittest

from grimoire import catalog
from grimoire.catalog import all_crystals, find_by_id, find_by_name, highlighted_crystals


class TestCatalogLookup(unittest.TestCase):
    def test_lookup_is_case_and_whitespace_insensitive(self) -> None:
        record = find_by_name("  AMETHYST ")
        self.assertIsNotNone(record)
        self.assertEqual(record.id, "amethyst")

    def test_every_alias_resolves_to_its_own_record(self) -> None:
        for record in all_crystals():
            self.assertIs(find_by_name(record.name), record)
            self.assertIs(find_by_name(record.id), record)
            for alias in record.aliases:
                self.assertIs(find_by_name(alias.upper()), record, alias)

    def test_unknown_names_return_none(self) -> None:
        self.assertIsNone(find_by_name("unobtainium"))
        self.assertIsNone(find_by_name(""))
        self.assertIsNone(find_by_name(None))
        self.assertIsNone(find_by_id(42))

    def test_ids_are_unique(self) -> None:
        ids = [record.id for record in all_crystals()]
        self.assertEqual(len(ids), len(set(ids)))

    def test_find_by_id(self) -> None:
        self.assertEqual(find_by_id(" Rose-Quartz ").name, "Rose Quartz")

    def test_all_crystals_returns_independent_list(self) -> None:
        crystals = all_crystals()
        size = len(crystals)
        crystals.clear()
        self.assertEqual(len(all_crystals()), size)

    def test_highlighted_pool_is_subset_in_declaration_order(self) -> None:
        highlighted = highlighted_crystals()
        self.assertTrue(highlighted)
        order = [record.id for record in all_crystals()]
        positions = [order.index(record.id) for record in highlighted]
        self.assertEqual(positions, sorted(positions))

    def test_set_attributes_are_lowercase(self) -> None:
        for record in all_crystals():
            for values in (record.intents, record.keywords, record.chakras, record.healing_properties):
                for value in values:
                    self.assertEqual(value, value.lower())


class TestCatalogIndexValidation(unittest.TestCase):
    def test_duplicate_id_is_rejected(self) -> None:
        a = catalog._crystal("stone", "Stone A")
        b = catalog._crystal("stone", "Stone B")
        with self.assertRaises(ValueError):
            catalog._build_name_index([a, b])

    def test_shared_alias_is_rejected(self) -> None:
        a = catalog._crystal("stone-a", "Stone A", aliases=["Shared"])
        b = catalog._crystal("stone-b", "Stone B", aliases=["shared"])
        with self.assertRaises(ValueError):
            catalog._build_name_index([a, b])

    def test_payload_uses_client_field_names(self) -> None:
        payload = find_by_name("citrine").to_payload()
        self.assertEqual(payload["id"], "citrine")
        self.assertIn("healingProperties", payload)
        self.assertIn("careInstructions", payload)
        self.assertEqual(set(payload["careInstructions"]), {"cleansing", "charging", "storage", "usage"})


if __name__ == "__main__":
    unittest.main()
