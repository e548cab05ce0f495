"""Per-user daily and lifetime usage counters with transactional daily caps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

import pytz

from grimoire.document_store import DocumentStore, Transaction
from grimoire.errors import InvalidArgument, ResourceExhausted, Unauthenticated
from grimoire.plan_catalog import (
    USAGE_LIMIT_MAPPING,
    PlanDetails,
    UsageSnapshot,
    coerce_usage_snapshot,
    daily_limit_for_action,
)

logger = logging.getLogger("crystal_grimoire")

# Server-authoritative increment per counted action.
ACTION_INCREMENTS: Mapping[str, int] = MappingProxyType({
    "crystal_identification": 1,
    "crystal_guidance": 1,
    "crystal_recommendations": 1,
    "healing_layout": 1,
    "moon_ritual": 1,
    "dream_analysis": 1,
})

USAGE_COLLECTION = "usage"


def utc_today() -> str:
    return datetime.now(pytz.utc).date().isoformat()


def utc_now_iso() -> str:
    return datetime.now(pytz.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class UsageIncrement:
    action_key: str
    new_daily_count: int
    new_lifetime_count: int
    daily_limit: int | None
    date: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "action": self.action_key,
            "dailyCount": self.new_daily_count,
            "lifetimeCount": self.new_lifetime_count,
            "dailyLimit": self.daily_limit,
            "remaining": None if self.daily_limit is None else max(0, self.daily_limit - self.new_daily_count),
            "date": self.date,
        }


def usage_document_path(user_id: str) -> str:
    return f"{USAGE_COLLECTION}/{user_id}"


def _require_user(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise Unauthenticated("Sign in to use this feature.")
    return user_id.strip()


def validate_action(action_key: Any, expected_increment: Any) -> tuple[str, int]:
    """Check the action is known and the client-declared increment matches the server value."""
    if not isinstance(action_key, str) or action_key not in ACTION_INCREMENTS:
        raise InvalidArgument(f"Unknown usage action: {action_key!r}")
    increment = ACTION_INCREMENTS[action_key]
    if isinstance(expected_increment, bool) or not isinstance(expected_increment, int) or expected_increment != increment:
        raise InvalidArgument(
            f"Invalid increment for {action_key}: expected {increment}",
            details={"action": action_key, "expected": increment},
        )
    return action_key, increment


class UsageLedger:
    """Owns the ``usage/{userId}`` counter documents."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def record_action(
        self,
        user_id: str,
        action_key: str,
        expected_increment: int,
        *,
        plan: PlanDetails | None = None,
        today: str | None = None,
    ) -> UsageIncrement:
        uid = _require_user(user_id)
        action, increment = validate_action(action_key, expected_increment)
        day = today or utc_today()
        daily_limit = daily_limit_for_action(plan, action)
        path = usage_document_path(uid)

        def _apply(txn: Transaction) -> UsageIncrement:
            snapshot = coerce_usage_snapshot(txn.get(path))
            daily_counts = snapshot.daily_counts
            if snapshot.last_reset_date != day:
                daily_counts = {}
            current = int(daily_counts.get(action, 0))
            if daily_limit is not None and current >= daily_limit:
                rule = USAGE_LIMIT_MAPPING[action]
                raise ResourceExhausted(
                    f"Daily limit reached: your plan allows {daily_limit} {rule.description} per day.",
                    details={"action": action, "limitKey": rule.limit_key, "limit": daily_limit},
                )
            daily_counts = dict(daily_counts)
            daily_counts[action] = current + increment
            lifetime_counts = dict(snapshot.lifetime_counts)
            lifetime_counts[action] = int(lifetime_counts.get(action, 0)) + increment
            txn.set(
                path,
                {
                    "dailyCounts": daily_counts,
                    "lifetimeCounts": lifetime_counts,
                    "lastResetDate": day,
                    "updatedAt": utc_now_iso(),
                },
            )
            return UsageIncrement(
                action_key=action,
                new_daily_count=daily_counts[action],
                new_lifetime_count=lifetime_counts[action],
                daily_limit=daily_limit,
                date=day,
            )

        result = self._store.run_transaction(_apply)
        logger.info(
            "Usage recorded user_id=%s action=%s daily=%s lifetime=%s limit=%s",
            uid,
            action,
            result.new_daily_count,
            result.new_lifetime_count,
            daily_limit,
        )
        return result

    def get_snapshot(self, user_id: str, *, today: str | None = None) -> UsageSnapshot:
        """Read the user's counters; a stale day reports empty daily counts without writing."""
        uid = _require_user(user_id)
        snapshot = coerce_usage_snapshot(self._store.get(usage_document_path(uid)))
        day = today or utc_today()
        if snapshot.last_reset_date is not None and snapshot.last_reset_date != day:
            snapshot.daily_counts = {}
        return snapshot
