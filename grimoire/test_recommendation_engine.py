from __future__ import annotations

import unittest

from grimoire.catalog import all_crystals, find_by_name
from grimoire.intent_resolver import resolve_intent_keys
from grimoire.recommendation_engine import UserProfile, owned_crystal_ids, recommend, score_crystal


def _names(entries) -> list[str]:
    return [entry.crystal.name for entry in entries]


class TestScoreCrystal(unittest.TestCase):
    def test_intent_match_scores_four_per_key(self) -> None:
        score, matched = score_crystal(find_by_name("amethyst"), {"anxiety", "sleep"})
        self.assertEqual(score, 8)
        self.assertEqual(matched, {"anxiety", "sleep"})

    def test_profile_weights(self) -> None:
        profile = UserProfile(zodiac_sign="Pisces", focus_chakras=["Third Eye"], element="Water", mood="calm")
        score, matched = score_crystal(find_by_name("amethyst"), set(), profile)
        # chakra 3 + zodiac 2 + mood 2 + element 1
        self.assertEqual(score, 8)
        self.assertEqual(matched, set())

    def test_name_mention_bonus(self) -> None:
        score, _ = score_crystal(find_by_name("citrine"), set(), None, "My citrine feels dull lately")
        self.assertEqual(score, 5)

    def test_missing_profile_fields_contribute_nothing(self) -> None:
        score, _ = score_crystal(find_by_name("citrine"), set(), UserProfile())
        self.assertEqual(score, 0)


class TestRecommend(unittest.TestCase):
    def test_limit_three_returns_exactly_three_sorted(self) -> None:
        entries = recommend({"anxiety"}, limit=3)
        self.assertEqual(len(entries), 3)
        self.assertEqual(_names(entries), ["Amethyst", "Black Tourmaline", "Blue Lace Agate"])

    def test_ties_break_by_name(self) -> None:
        entries = recommend({"anxiety"}, limit=5)
        self.assertTrue(all(entry.score == 4 for entry in entries))
        self.assertEqual(_names(entries), sorted(_names(entries)))

    def test_backfill_keeps_positive_scores_first(self) -> None:
        entries = recommend({"communication"}, limit=5)
        self.assertEqual(
            _names(entries),
            ["Blue Lace Agate", "Lapis Lazuli", "Amethyst", "Black Tourmaline", "Carnelian"],
        )
        self.assertEqual([entry.score for entry in entries], [4, 4, 0, 0, 0])

    def test_named_crystal_ranks_first_even_with_lower_score(self) -> None:
        need = "Black Tourmaline for love and money and sleep"
        entries = recommend(resolve_intent_keys([need]), limit=3, need_text=need)
        self.assertEqual(_names(entries)[:2], ["Black Tourmaline", "Green Aventurine"])
        self.assertEqual([entry.score for entry in entries[:2]], [5, 8])

    def test_named_crystals_tie_at_top_by_score(self) -> None:
        need = "amethyst or citrine for sleep"
        entries = recommend(resolve_intent_keys([need]), limit=4, need_text=need)
        self.assertEqual(_names(entries)[:2], ["Amethyst", "Citrine"])
        self.assertTrue(all(entry.mentioned for entry in entries[:2]))
        self.assertFalse(any(entry.mentioned for entry in entries[2:]))

    def test_limit_is_clamped(self) -> None:
        self.assertEqual(len(recommend({"balance"}, limit=100)), len(all_crystals()))
        self.assertEqual(len(recommend({"balance"}, limit=0)), 1)
        self.assertEqual(len(recommend({"balance"}, limit=10, max_limit=4)), 4)

    def test_stress_ranks_calming_crystal_above_uncalming_one(self) -> None:
        keys = resolve_intent_keys(["stress"])
        entries = recommend(keys, UserProfile(mood="calm"), limit=len(all_crystals()))
        order = [entry.crystal.id for entry in entries]
        self.assertLess(order.index("amethyst"), order.index("citrine"))

    def test_ownership_is_annotated_without_changing_order(self) -> None:
        plain = recommend({"love"}, limit=5)
        owned = recommend({"love"}, UserProfile(owned_crystal_names=["love stone", "PURPLE QUARTZ"]), limit=5)
        self.assertEqual(_names(plain), _names(owned))
        flags = {entry.crystal.id: entry.owned for entry in owned}
        self.assertTrue(flags["rose-quartz"])
        self.assertFalse(flags["green-aventurine"])

    def test_exclude_accepts_names_and_aliases(self) -> None:
        entries = recommend({"anxiety"}, limit=10, exclude=["Purple Quartz", "black tourmaline"])
        ids = {entry.crystal.id for entry in entries}
        self.assertNotIn("amethyst", ids)
        self.assertNotIn("black-tourmaline", ids)

    def test_duplicate_records_are_merged(self) -> None:
        record = find_by_name("amethyst")
        entries = recommend({"sleep"}, limit=5, catalog=[record, record])
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].matched_intents, {"sleep"})

    def test_owned_crystal_ids_ignores_unknown_names(self) -> None:
        ids = owned_crystal_ids(UserProfile(owned_crystal_names=["Tiger Eye", "mystery rock"]))
        self.assertEqual(ids, {"tigers-eye"})

    def test_profile_from_mapping_accepts_camel_case(self) -> None:
        profile = UserProfile.from_mapping({"zodiacSign": "leo", "focusChakra": "heart", "ownedCrystalNames": ["Citrine"]})
        self.assertEqual(profile.zodiac_sign, "leo")
        self.assertEqual(profile.focus_chakras, ["heart"])
        self.assertEqual(profile.owned_crystal_names, ["Citrine"])
        self.assertEqual(UserProfile.from_mapping(None), UserProfile())


if __name__ == "__main__":
    unittest.main()
