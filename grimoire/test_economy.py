from __future__ import annotations

import unittest

from grimoire.document_store import InMemoryDocumentStore
from grimoire.economy import (
    CREDIT_PACKS,
    earn_credits,
    get_balance,
    grant_purchased_credits,
    resolve_credit_pack,
    spend_credits,
    wallet_document_path,
)
from grimoire.errors import FailedPrecondition, InvalidArgument, ResourceExhausted, Unauthenticated


class TestEconomy(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()

    def test_earn_respects_daily_cap(self) -> None:
        first = earn_credits(self.store, "u1", "daily_checkin", today="2024-06-01")
        self.assertEqual(first["earned"], 5)
        self.assertEqual(first["balance"], 5)
        with self.assertRaises(ResourceExhausted):
            earn_credits(self.store, "u1", "daily_checkin", today="2024-06-01")
        again = earn_credits(self.store, "u1", "daily_checkin", today="2024-06-02")
        self.assertEqual(again["balance"], 10)
        self.assertEqual(again["dailyEarnCounts"], {"daily_checkin": 1})

    def test_earn_unknown_action(self) -> None:
        with self.assertRaises(InvalidArgument):
            earn_credits(self.store, "u1", "mining")
        with self.assertRaises(Unauthenticated):
            earn_credits(self.store, "", "daily_checkin")

    def test_spend_requires_balance(self) -> None:
        earn_credits(self.store, "u1", "ritual_complete", today="2024-06-01")
        with self.assertRaises(FailedPrecondition) as ctx:
            spend_credits(self.store, "u1", 10)
        self.assertEqual(ctx.exception.details, {"balance": 4, "required": 10})
        result = spend_credits(self.store, "u1", 3, reason="tarot spread")
        self.assertEqual((result["balance"], result["lifetimeSpent"], result["spent"]), (1, 3, 3))

    def test_spend_rejects_non_positive(self) -> None:
        for bad in (0, -5, 1.5, True):
            with self.assertRaises(InvalidArgument):
                spend_credits(self.store, "u1", bad)

    def test_balance_of_new_user(self) -> None:
        balance = get_balance(self.store, "u1", today="2024-06-01")
        self.assertEqual(balance["balance"], 0)
        self.assertEqual(balance["date"], "2024-06-01")
        self.assertIsNone(self.store.get(wallet_document_path("u1")))

    def test_purchase_grant_is_idempotent(self) -> None:
        first = grant_purchased_credits(self.store, "u1", "pi_1", 120)
        second = grant_purchased_credits(self.store, "u1", "pi_1", 120)
        self.assertEqual((first["granted"], first["alreadyProcessed"]), (120, False))
        self.assertEqual((second["granted"], second["alreadyProcessed"]), (0, True))
        self.assertEqual(second["balance"], 120)

    def test_credit_packs(self) -> None:
        pack = resolve_credit_pack(" Seeker ")
        self.assertEqual(pack["packId"], "seeker")
        self.assertEqual(pack["credits"], CREDIT_PACKS["seeker"]["credits"])
        with self.assertRaises(InvalidArgument):
            resolve_credit_pack("whale")


if __name__ == "__main__":
    unittest.main()
