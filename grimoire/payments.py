"""Stripe payment collaborator: payment intents, checkout sessions and plan upgrades."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import stripe

from grimoire.config import Settings
from grimoire.document_store import DocumentStore, Transaction
from grimoire.errors import FailedPrecondition, Internal, InvalidArgument, NotFound
from grimoire.plan_catalog import (
    PLAN_DETAILS,
    build_plan_status_response,
    merge_plan_document,
    normalize_plan_id,
    plan_document_path,
    resolve_plan_details,
)
from grimoire.usage_ledger import utc_now_iso

logger = logging.getLogger("crystal_grimoire")

PAID_TIERS = tuple(tier for tier in PLAN_DETAILS if tier != "free")
SUPPORTED_CURRENCIES = frozenset({"usd", "eur", "gbp", "cad", "aud"})


def validate_amount(amount: Any) -> int:
    """Amounts are positive integers in minor units (cents)."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidArgument("Amount must be a whole number of cents", details={"amount": repr(amount)})
    if amount <= 0:
        raise InvalidArgument("Amount must be greater than zero", details={"amount": amount})
    return amount


def validate_currency(currency: Any, default: str = "usd") -> str:
    value = str(currency or default).strip().lower()
    if value not in SUPPORTED_CURRENCIES:
        raise InvalidArgument(f"Unsupported currency: {value}")
    return value


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, default)


def _metadata(obj: Any) -> dict[str, Any]:
    raw = _field(obj, "metadata")
    if raw is None:
        return {}
    try:
        return dict(raw)
    except (TypeError, ValueError):
        return {}


class PaymentService:
    """Wraps the Stripe SDK; every call passes the configured key explicitly."""

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def configured(self) -> bool:
        return self._settings.payments_configured

    def _require_configured(self) -> str:
        if not self._settings.payments_configured:
            raise FailedPrecondition("Payments are not configured on this server.")
        return self._settings.stripe_secret_key

    def create_intent(
        self,
        amount: Any,
        currency: Any = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        cents = validate_amount(amount)
        code = validate_currency(currency, self._settings.default_currency)
        api_key = self._require_configured()
        clean_metadata = {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}
        try:
            intent = stripe.PaymentIntent.create(
                amount=cents,
                currency=code,
                metadata=clean_metadata,
                automatic_payment_methods={"enabled": True},
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe payment intent failed amount=%s currency=%s error=%s", cents, code, e)
            raise Internal("Failed to create payment intent") from e
        logger.info("Stripe payment intent created intent_id=%s amount=%s currency=%s", _field(intent, "id"), cents, code)
        return {
            "id": _field(intent, "id"),
            "status": _field(intent, "status"),
            "clientSecret": _field(intent, "client_secret"),
        }

    def retrieve_intent(self, intent_id: Any) -> Any:
        if not isinstance(intent_id, str) or not intent_id.strip():
            raise InvalidArgument("Payment intent id is required")
        api_key = self._require_configured()
        try:
            return stripe.PaymentIntent.retrieve(intent_id.strip(), api_key=api_key)
        except stripe.InvalidRequestError as e:
            raise NotFound("Payment not found") from e
        except stripe.StripeError as e:
            logger.error("Stripe payment intent lookup failed intent_id=%s error=%s", intent_id, e)
            raise Internal("Failed to look up payment") from e

    def retrieve_session(self, session_id: Any) -> Any:
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidArgument("Checkout session id is required")
        api_key = self._require_configured()
        try:
            return stripe.checkout.Session.retrieve(session_id.strip(), api_key=api_key)
        except stripe.InvalidRequestError as e:
            raise NotFound("Checkout session not found") from e
        except stripe.StripeError as e:
            logger.error("Stripe session lookup failed session_id=%s error=%s", session_id, e)
            raise Internal("Failed to look up checkout session") from e

    def create_checkout_session(
        self,
        tier: Any,
        user_id: str,
        *,
        email: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> dict[str, Any]:
        plan_id = normalize_plan_id(tier)
        if plan_id not in PAID_TIERS:
            raise InvalidArgument(f"Plan {tier!r} cannot be purchased")
        api_key = self._require_configured()
        price_id = self._settings.price_id_for(plan_id)
        if not price_id:
            raise FailedPrecondition(f"No Stripe price is configured for the {plan_id} plan.")

        plan = resolve_plan_details(plan_id)
        base_url = self._settings.app_base_url
        params: dict[str, Any] = {
            "mode": "payment" if plan.lifetime else "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{base_url}/subscription?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url or f"{base_url}/subscription?cancelled=true",
            "client_reference_id": user_id,
            "metadata": {"userId": user_id, "tier": plan_id, "priceId": price_id},
            "api_key": api_key,
        }
        if email:
            params["customer_email"] = email
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe checkout failed user_id=%s tier=%s error=%s", user_id, plan_id, e)
            raise Internal("Failed to create checkout session") from e
        logger.info("Stripe checkout created user_id=%s tier=%s session_id=%s", user_id, plan_id, _field(session, "id"))
        return {"sessionId": _field(session, "id"), "url": _field(session, "url"), "tier": plan_id}

    def confirm_checkout(self, session_id: Any, user_id: str, store: DocumentStore) -> dict[str, Any]:
        """Apply a paid checkout session to the user's plan document."""
        session = self.retrieve_session(session_id)
        metadata = _metadata(session)
        owner = metadata.get("userId") or _field(session, "client_reference_id")
        if not owner or owner != user_id:
            raise InvalidArgument("Checkout session belongs to a different account")
        if _field(session, "payment_status") != "paid":
            raise FailedPrecondition(
                "Payment has not completed yet",
                details={"paymentStatus": _field(session, "payment_status")},
            )

        plan = resolve_plan_details(metadata.get("tier"))
        path = plan_document_path(user_id)

        def _apply(txn: Transaction) -> dict[str, Any]:
            merged = merge_plan_document(
                txn.get(path),
                plan,
                provider="stripe",
                priceId=metadata.get("priceId"),
                customerId=_field(session, "customer"),
                subscriptionId=_field(session, "subscription"),
                willRenew=_field(session, "mode") == "subscription",
                status="active",
            )
            merged["updatedAt"] = utc_now_iso()
            merged["lastSessionId"] = _field(session, "id")
            txn.set(path, merged)
            return merged

        stored = store.run_transaction(_apply)
        logger.info("Plan upgraded user_id=%s tier=%s session_id=%s", user_id, plan.tier, _field(session, "id"))
        response = build_plan_status_response(plan, None)
        response["provider"] = stored.get("provider")
        response["status"] = stored.get("status")
        return response
