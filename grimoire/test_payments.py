from __future__ import annotations

import unittest
from unittest.mock import patch

import stripe

from grimoire.config import Settings
from grimoire.document_store import InMemoryDocumentStore
from grimoire.errors import FailedPrecondition, Internal, InvalidArgument, NotFound
from grimoire.payments import PaymentService, validate_amount, validate_currency
from grimoire.plan_catalog import plan_document_path

_SETTINGS = Settings(
    stripe_secret_key="sk_test_123",
    stripe_price_ids={"premium": "price_premium", "founders": "price_founders"},
    app_base_url="https://grimoire.example",
)


class TestValidation(unittest.TestCase):
    def test_amount(self) -> None:
        self.assertEqual(validate_amount(499), 499)
        for bad in (0, -1, 4.99, "499", True, None):
            with self.assertRaises(InvalidArgument, msg=repr(bad)):
                validate_amount(bad)

    def test_currency(self) -> None:
        self.assertEqual(validate_currency(" EUR "), "eur")
        self.assertEqual(validate_currency(None), "usd")
        with self.assertRaises(InvalidArgument):
            validate_currency("doge")


class TestPaymentIntents(unittest.TestCase):
    def setUp(self) -> None:
        self.service = PaymentService(_SETTINGS)

    @patch("grimoire.payments.stripe.PaymentIntent.create")
    def test_create_intent_passes_key_per_call(self, create) -> None:
        create.return_value = {"id": "pi_1", "status": "requires_payment_method", "client_secret": "cs_1"}
        result = self.service.create_intent(999, "USD", {"packId": "seeker", "skip": None})
        self.assertEqual(result, {"id": "pi_1", "status": "requires_payment_method", "clientSecret": "cs_1"})
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["api_key"], "sk_test_123")
        self.assertEqual(kwargs["currency"], "usd")
        self.assertEqual(kwargs["metadata"], {"packId": "seeker"})

    @patch("grimoire.payments.stripe.PaymentIntent.create")
    def test_stripe_failure_is_internal(self, create) -> None:
        create.side_effect = stripe.StripeError("card network down")
        with self.assertRaises(Internal):
            self.service.create_intent(999)

    def test_unconfigured_service(self) -> None:
        service = PaymentService(Settings())
        self.assertFalse(service.configured)
        with self.assertRaises(FailedPrecondition):
            service.create_intent(999)

    @patch("grimoire.payments.stripe.PaymentIntent.retrieve")
    def test_unknown_intent_not_found(self, retrieve) -> None:
        retrieve.side_effect = stripe.InvalidRequestError("No such payment_intent", "id")
        with self.assertRaises(NotFound):
            self.service.retrieve_intent("pi_missing")


class TestCheckout(unittest.TestCase):
    def setUp(self) -> None:
        self.service = PaymentService(_SETTINGS)
        self.store = InMemoryDocumentStore()

    @patch("grimoire.payments.stripe.checkout.Session.create")
    def test_subscription_session(self, create) -> None:
        create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
        result = self.service.create_checkout_session("emissary", "u1", email="a@b.c")
        self.assertEqual(result, {"sessionId": "cs_1", "url": "https://checkout.stripe.test/cs_1", "tier": "premium"})
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["mode"], "subscription")
        self.assertEqual(kwargs["metadata"], {"userId": "u1", "tier": "premium", "priceId": "price_premium"})
        self.assertEqual(kwargs["customer_email"], "a@b.c")
        self.assertTrue(kwargs["success_url"].startswith("https://grimoire.example/subscription"))

    @patch("grimoire.payments.stripe.checkout.Session.create")
    def test_lifetime_plan_is_one_time_payment(self, create) -> None:
        create.return_value = {"id": "cs_2", "url": "u"}
        self.service.create_checkout_session("founders", "u1")
        self.assertEqual(create.call_args.kwargs["mode"], "payment")

    def test_free_and_unpriced_tiers_rejected(self) -> None:
        with self.assertRaises(InvalidArgument):
            self.service.create_checkout_session("free", "u1")
        with self.assertRaises(FailedPrecondition):
            self.service.create_checkout_session("pro", "u1")

    @patch("grimoire.payments.stripe.checkout.Session.retrieve")
    def test_confirm_paid_session_upgrades_plan(self, retrieve) -> None:
        self.store.set(plan_document_path("u1"), {"plan": "free", "nickname": "kept"})
        retrieve.return_value = {
            "id": "cs_1",
            "payment_status": "paid",
            "mode": "subscription",
            "customer": "cus_9",
            "subscription": "sub_9",
            "metadata": {"userId": "u1", "tier": "premium", "priceId": "price_premium"},
        }
        result = self.service.confirm_checkout("cs_1", "u1", self.store)
        self.assertEqual(result["tier"], "premium")
        self.assertEqual(result["provider"], "stripe")
        stored = self.store.get(plan_document_path("u1"))
        self.assertEqual(stored["plan"], "premium")
        self.assertEqual(stored["customerId"], "cus_9")
        self.assertTrue(stored["willRenew"])
        self.assertEqual(stored["nickname"], "kept")
        self.assertEqual(stored["lastSessionId"], "cs_1")

    @patch("grimoire.payments.stripe.checkout.Session.retrieve")
    def test_confirm_rejects_other_owner_and_unpaid(self, retrieve) -> None:
        retrieve.return_value = {"id": "cs_1", "payment_status": "paid", "metadata": {"userId": "u2", "tier": "pro"}}
        with self.assertRaises(InvalidArgument):
            self.service.confirm_checkout("cs_1", "u1", self.store)
        retrieve.return_value = {"id": "cs_1", "payment_status": "unpaid", "metadata": {"userId": "u1", "tier": "pro"}}
        with self.assertRaises(FailedPrecondition):
            self.service.confirm_checkout("cs_1", "u1", self.store)
        self.assertIsNone(self.store.get(plan_document_path("u1")))

    @patch("grimoire.payments.stripe.checkout.Session.retrieve")
    def test_confirm_rejects_session_without_owner(self, retrieve) -> None:
        retrieve.return_value = {"id": "cs_2", "payment_status": "paid", "metadata": {"tier": "pro"}}
        with self.assertRaises(InvalidArgument):
            self.service.confirm_checkout("cs_2", "u1", self.store)
        self.assertIsNone(self.store.get(plan_document_path("u1")))


if __name__ == "__main__":
    unittest.main()
