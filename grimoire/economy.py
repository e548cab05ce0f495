"""Seer Credits: a small virtual currency earned by engagement and spent on extras."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping

from grimoire.document_store import DocumentStore, Transaction
from grimoire.errors import FailedPrecondition, InvalidArgument, ResourceExhausted, Unauthenticated
from grimoire.usage_ledger import utc_now_iso, utc_today

logger = logging.getLogger("crystal_grimoire")

ECONOMY_DAILY_LIMITS: Mapping[str, int] = MappingProxyType({
    "share_card": 3,
    "meditation_complete": 1,
    "crystal_identify_new": 3,
    "journal_entry": 1,
    "ritual_complete": 1,
    "daily_checkin": 1,
})

EARN_AMOUNTS: Mapping[str, int] = MappingProxyType({
    "share_card": 2,
    "meditation_complete": 3,
    "crystal_identify_new": 5,
    "journal_entry": 2,
    "ritual_complete": 4,
    "daily_checkin": 5,
})

CREDIT_PACKS: Mapping[str, Mapping[str, Any]] = MappingProxyType({
    "starter": MappingProxyType({"credits": 50, "amountCents": 499, "displayName": "Starter Pouch"}),
    "seeker": MappingProxyType({"credits": 120, "amountCents": 999, "displayName": "Seeker's Satchel"}),
    "oracle": MappingProxyType({"credits": 300, "amountCents": 1999, "displayName": "Oracle's Chest"}),
})

# Processed payment ids kept on the wallet for idempotent grants.
MAX_TRACKED_PAYMENTS = 100


def wallet_document_path(user_id: str) -> str:
    return f"users/{user_id}/economy/credits"


def _require_user(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise Unauthenticated("Sign in to use Seer Credits.")
    return user_id.strip()


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(f"{label} must be a positive whole number")
    return value


def _wallet(raw: Any, day: str) -> dict[str, Any]:
    data = dict(raw) if isinstance(raw, dict) else {}
    counts = data.get("dailyEarnCounts") if isinstance(data.get("dailyEarnCounts"), dict) else {}
    if data.get("lastResetDate") != day:
        counts = {}
    return {
        "balance": int(data.get("balance") or 0),
        "lifetimeEarned": int(data.get("lifetimeEarned") or 0),
        "lifetimeSpent": int(data.get("lifetimeSpent") or 0),
        "dailyEarnCounts": {str(k): int(v) for k, v in counts.items()},
        "lastResetDate": day,
        "processedPayments": list(data.get("processedPayments") or []),
        "updatedAt": data.get("updatedAt"),
    }


def _public(wallet: dict[str, Any]) -> dict[str, Any]:
    return {
        "balance": wallet["balance"],
        "lifetimeEarned": wallet["lifetimeEarned"],
        "lifetimeSpent": wallet["lifetimeSpent"],
        "dailyEarnCounts": dict(wallet["dailyEarnCounts"]),
        "dailyLimits": dict(ECONOMY_DAILY_LIMITS),
        "date": wallet["lastResetDate"],
    }


def resolve_credit_pack(pack_id: Any) -> dict[str, Any]:
    key = str(pack_id or "").strip().lower()
    pack = CREDIT_PACKS.get(key)
    if pack is None:
        raise InvalidArgument(f"Unknown credit pack: {pack_id!r}", details={"packs": sorted(CREDIT_PACKS)})
    return {"packId": key, **pack}


def earn_credits(store: DocumentStore, user_id: str, action: Any, *, today: str | None = None) -> dict[str, Any]:
    uid = _require_user(user_id)
    if not isinstance(action, str) or action not in EARN_AMOUNTS:
        raise InvalidArgument(f"Unknown earn action: {action!r}")
    day = today or utc_today()
    amount = EARN_AMOUNTS[action]
    limit = ECONOMY_DAILY_LIMITS[action]
    path = wallet_document_path(uid)

    def _apply(txn: Transaction) -> dict[str, Any]:
        wallet = _wallet(txn.get(path), day)
        current = wallet["dailyEarnCounts"].get(action, 0)
        if current >= limit:
            raise ResourceExhausted(
                f"You have already earned credits for {action.replace('_', ' ')} {limit} time(s) today.",
                details={"action": action, "limit": limit},
            )
        wallet["dailyEarnCounts"][action] = current + 1
        wallet["balance"] += amount
        wallet["lifetimeEarned"] += amount
        wallet["updatedAt"] = utc_now_iso()
        txn.set(path, wallet)
        return wallet

    wallet = store.run_transaction(_apply)
    logger.info("Seer credits earned user_id=%s action=%s amount=%s balance=%s", uid, action, amount, wallet["balance"])
    result = _public(wallet)
    result["earned"] = amount
    return result


def spend_credits(store: DocumentStore, user_id: str, amount: Any, *, reason: str | None = None) -> dict[str, Any]:
    uid = _require_user(user_id)
    cost = _positive_int(amount, "Amount")
    path = wallet_document_path(uid)
    day = utc_today()

    def _apply(txn: Transaction) -> dict[str, Any]:
        wallet = _wallet(txn.get(path), day)
        if wallet["balance"] < cost:
            raise FailedPrecondition(
                "Not enough Seer Credits",
                details={"balance": wallet["balance"], "required": cost},
            )
        wallet["balance"] -= cost
        wallet["lifetimeSpent"] += cost
        wallet["updatedAt"] = utc_now_iso()
        txn.set(path, wallet)
        return wallet

    wallet = store.run_transaction(_apply)
    logger.info("Seer credits spent user_id=%s amount=%s reason=%s balance=%s", uid, cost, reason or "-", wallet["balance"])
    result = _public(wallet)
    result["spent"] = cost
    return result


def get_balance(store: DocumentStore, user_id: str, *, today: str | None = None) -> dict[str, Any]:
    uid = _require_user(user_id)
    return _public(_wallet(store.get(wallet_document_path(uid)), today or utc_today()))


def grant_purchased_credits(
    store: DocumentStore,
    user_id: str,
    payment_intent_id: str,
    credits: Any,
) -> dict[str, Any]:
    """Add purchased credits once per payment intent; repeats return the wallet unchanged."""
    uid = _require_user(user_id)
    amount = _positive_int(credits, "Credits")
    if not isinstance(payment_intent_id, str) or not payment_intent_id.strip():
        raise InvalidArgument("Payment intent id is required")
    intent_id = payment_intent_id.strip()
    path = wallet_document_path(uid)
    day = utc_today()

    def _apply(txn: Transaction) -> tuple[dict[str, Any], bool]:
        wallet = _wallet(txn.get(path), day)
        if intent_id in wallet["processedPayments"]:
            return wallet, False
        wallet["balance"] += amount
        wallet["lifetimeEarned"] += amount
        wallet["processedPayments"] = (wallet["processedPayments"] + [intent_id])[-MAX_TRACKED_PAYMENTS:]
        wallet["updatedAt"] = utc_now_iso()
        txn.set(path, wallet)
        return wallet, True

    wallet, granted = store.run_transaction(_apply)
    logger.info(
        "Seer credits purchase user_id=%s intent_id=%s credits=%s granted=%s balance=%s",
        uid,
        intent_id,
        amount,
        granted,
        wallet["balance"],
    )
    result = _public(wallet)
    result["granted"] = amount if granted else 0
    result["alreadyProcessed"] = not granted
    return result
