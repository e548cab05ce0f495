"""Subscription tiers, usage limits and plan document helpers.

The tables below are frozen reference data. ``resolve_plan_details`` always
builds a fresh ``PlanDetails`` so callers can mutate what they receive
without touching the source tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from grimoire.errors import ResourceExhausted

DEFAULT_TIER = "free"

PLAN_DETAILS: Mapping[str, Mapping[str, Any]] = MappingProxyType({
    "free": MappingProxyType({
        "plan": "free",
        "effectiveLimits": MappingProxyType({
            "identifyPerDay": 3,
            "guidancePerDay": 1,
            "dreamAnalysesPerDay": 1,
            "recommendationsPerDay": 2,
            "moonRitualsPerDay": 1,
            "journalMax": 50,
            "collectionMax": 50,
        }),
        "flags": ("free",),
        "lifetime": False,
    }),
    "premium": MappingProxyType({
        "plan": "premium",
        "effectiveLimits": MappingProxyType({
            "identifyPerDay": 15,
            "guidancePerDay": 5,
            "dreamAnalysesPerDay": 5,
            "recommendationsPerDay": 8,
            "moonRitualsPerDay": 5,
            "journalMax": 200,
            "collectionMax": 250,
        }),
        "flags": ("priority_support", "stripe"),
        "lifetime": False,
    }),
    "pro": MappingProxyType({
        "plan": "pro",
        "effectiveLimits": MappingProxyType({
            "identifyPerDay": 40,
            "guidancePerDay": 15,
            "dreamAnalysesPerDay": 20,
            "recommendationsPerDay": 25,
            "moonRitualsPerDay": 20,
            "journalMax": 500,
            "collectionMax": 1000,
        }),
        "flags": ("priority_support", "advanced_ai", "stripe"),
        "lifetime": False,
    }),
    "founders": MappingProxyType({
        "plan": "founders",
        "effectiveLimits": MappingProxyType({
            "identifyPerDay": 999,
            "guidancePerDay": 200,
            "dreamAnalysesPerDay": 200,
            "recommendationsPerDay": 300,
            "moonRitualsPerDay": 200,
            "journalMax": 2000,
            "collectionMax": 2000,
        }),
        "flags": ("lifetime", "founder", "priority_support", "stripe"),
        "lifetime": True,
    }),
})

PLAN_ALIASES: Mapping[str, str] = MappingProxyType({
    "explorer": "free",
    "emissary": "premium",
    "ascended": "pro",
    "esper": "founders",
})


@dataclass(frozen=True)
class UsageLimitRule:
    limit_key: str
    usage_field: str
    description: str


USAGE_LIMIT_MAPPING: Mapping[str, UsageLimitRule] = MappingProxyType({
    "crystal_identification": UsageLimitRule("identifyPerDay", "crystalIdentification", "crystal identifications"),
    "crystal_guidance": UsageLimitRule("guidancePerDay", "crystalGuidance", "crystal guidance requests"),
    "crystal_recommendations": UsageLimitRule("recommendationsPerDay", "recommendations", "recommendations"),
    "healing_layout": UsageLimitRule("recommendationsPerDay", "healingLayouts", "healing layout requests"),
    "moon_ritual": UsageLimitRule("moonRitualsPerDay", "moonRituals", "moon ritual lookups"),
    "dream_analysis": UsageLimitRule("dreamAnalysesPerDay", "dreamAnalyses", "dream analyses"),
})

TOTAL_LIMIT_DESCRIPTIONS: Mapping[str, str] = MappingProxyType({
    "journalMax": "journal entries",
    "collectionMax": "collection entries",
})

PLAN_CATALOG_METADATA: Mapping[str, Mapping[str, Any]] = MappingProxyType({
    "free": MappingProxyType({
        "displayName": "Explorer",
        "tagline": "Track your crystals, journal dreams, and sample AI rituals.",
        "displayPrice": "Free",
        "billingCycle": "freemium",
        "recommended": False,
        "features": (
            "3 identifications each day",
            "Dream journal sync with verified email",
            "Starter rituals and moon reminders",
        ),
        "sortOrder": 0,
    }),
    "premium": MappingProxyType({
        "displayName": "Emissary",
        "tagline": "Daily guidance, richer rituals, and expanded journal space.",
        "displayPrice": "$8.99 / month",
        "billingCycle": "monthly",
        "recommended": True,
        "features": (
            "15 identifications every day",
            "Priority AI guidance responses",
            "Moon rituals synced across devices",
            "Curated healing layouts with intent presets",
        ),
        "sortOrder": 1,
    }),
    "pro": MappingProxyType({
        "displayName": "Ascended",
        "tagline": "Advanced AI ceremonies and deep-dive guidance for collectors.",
        "displayPrice": "$19.99 / month",
        "billingCycle": "monthly",
        "recommended": False,
        "features": (
            "40 identifications per day",
            "Extended dream and ritual insights",
            "Crystal compatibility matrix and export tools",
            "Weekly moon and chakra ceremony scripts",
        ),
        "sortOrder": 2,
    }),
    "founders": MappingProxyType({
        "displayName": "Founders Circle",
        "tagline": "Lifetime access to every ritual, ceremony, and beta release.",
        "displayPrice": "$499 one-time",
        "billingCycle": "lifetime",
        "recommended": False,
        "features": (
            "Unlimited identifications and rituals",
            "Founders badge and Discord role",
            "Priority feature voting and concierge support",
        ),
        "sortOrder": 3,
    }),
})


@dataclass
class PlanDetails:
    plan: str
    tier: str
    effective_limits: dict[str, int] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)
    lifetime: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "tier": self.tier,
            "effectiveLimits": dict(self.effective_limits),
            "flags": list(self.flags),
            "lifetime": self.lifetime,
        }


@dataclass
class UsageSnapshot:
    daily_counts: dict[str, int] = field(default_factory=dict)
    lifetime_counts: dict[str, int] = field(default_factory=dict)
    last_reset_date: str | None = None
    updated_at: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "dailyCounts": dict(self.daily_counts),
            "lifetimeCounts": dict(self.lifetime_counts),
            "lastResetDate": self.last_reset_date,
            "updatedAt": self.updated_at,
        }


def normalize_plan_id(raw_tier: Any) -> str:
    if not raw_tier:
        return DEFAULT_TIER
    normalized = str(raw_tier).strip().lower()
    if normalized in PLAN_DETAILS:
        return normalized
    if normalized in PLAN_ALIASES:
        return PLAN_ALIASES[normalized]
    return DEFAULT_TIER


def resolve_plan_details(raw_tier: Any) -> PlanDetails:
    """Resolve a tier or marketing alias into an independent PlanDetails copy."""
    tier = normalize_plan_id(raw_tier)
    details = PLAN_DETAILS[tier]
    return PlanDetails(
        plan=details["plan"],
        tier=tier,
        effective_limits=dict(details["effectiveLimits"]),
        flags=list(details["flags"]),
        lifetime=bool(details["lifetime"]),
    )


def daily_limit_for_action(plan: PlanDetails | None, action_key: str) -> int | None:
    if plan is None:
        return None
    rule = USAGE_LIMIT_MAPPING.get(action_key)
    if rule is None:
        return None
    value = plan.effective_limits.get(rule.limit_key)
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def assert_within_total_limit(plan: PlanDetails, limit_key: str, current_count: int) -> None:
    """Raise ResourceExhausted when a stored-item cap (journal, collection) is full."""
    limit = plan.effective_limits.get(limit_key)
    if limit is None:
        return
    if int(current_count) >= int(limit):
        description = TOTAL_LIMIT_DESCRIPTIONS.get(limit_key, limit_key)
        raise ResourceExhausted(
            f"Your {plan.tier} plan allows {limit} {description}. Upgrade your plan to add more.",
            details={"limitKey": limit_key, "limit": int(limit), "current": int(current_count)},
        )


def _count_map(raw: Any) -> dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    counts: dict[str, int] = {}
    for key, value in raw.items():
        try:
            counts[str(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return counts


def coerce_usage_snapshot(raw: Any) -> UsageSnapshot:
    if not isinstance(raw, dict):
        return UsageSnapshot()
    return UsageSnapshot(
        daily_counts=_count_map(raw.get("dailyCounts")),
        lifetime_counts=_count_map(raw.get("lifetimeCounts")),
        last_reset_date=raw.get("lastResetDate") or None,
        updated_at=raw.get("updatedAt") or None,
    )


def build_plan_status_response(plan: PlanDetails, usage: Any) -> dict[str, Any]:
    snapshot = usage if isinstance(usage, UsageSnapshot) else coerce_usage_snapshot(usage)
    return {
        "plan": plan.plan,
        "tier": plan.tier,
        "lifetime": plan.lifetime,
        "flags": list(plan.flags),
        "limits": dict(plan.effective_limits),
        "usage": {
            "daily": dict(snapshot.daily_counts),
            "lifetime": dict(snapshot.lifetime_counts),
            "lastResetDate": snapshot.last_reset_date,
            "updatedAt": snapshot.updated_at,
        },
    }


_PRESERVED_PLAN_FIELDS = ("provider", "priceId", "willRenew", "status", "customerId", "subscriptionId")


def merge_plan_document(existing: Any, plan: PlanDetails, **updates: Any) -> dict[str, Any]:
    """Merge a stored plan document with a freshly resolved plan.

    Precedence, field by field:
    - ``plan``, ``billingTier``, ``effectiveLimits``, ``flags`` and ``lifetime``
      always come from ``plan``;
    - provider/billing fields come from ``updates`` when supplied (non-None),
      otherwise from ``existing``;
    - any other key in ``existing`` is carried over unchanged.
    """
    base = dict(existing) if isinstance(existing, dict) else {}
    merged = dict(base)
    merged.update({
        "plan": plan.plan,
        "billingTier": plan.tier,
        "effectiveLimits": dict(plan.effective_limits),
        "flags": list(plan.flags),
        "lifetime": plan.lifetime,
    })
    for key in _PRESERVED_PLAN_FIELDS:
        value = updates.get(key)
        if value is not None:
            merged[key] = value
        elif key in base:
            merged[key] = base[key]
    merged.setdefault("status", "active")
    merged.setdefault("provider", "manual")
    return merged


def list_plan_catalog() -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for tier in PLAN_DETAILS:
        metadata = PLAN_CATALOG_METADATA.get(tier, {})
        plan = resolve_plan_details(tier)
        entries.append({
            "planId": tier,
            "displayName": metadata.get("displayName", tier),
            "tagline": metadata.get("tagline", ""),
            "displayPrice": metadata.get("displayPrice", ""),
            "billingCycle": metadata.get("billingCycle", "lifetime" if plan.lifetime else "recurring"),
            "recommended": bool(metadata.get("recommended", False)),
            "features": list(metadata.get("features", ())),
            "effectiveLimits": dict(plan.effective_limits),
            "flags": list(plan.flags),
            "lifetime": plan.lifetime,
            "sortOrder": metadata.get("sortOrder", len(entries)),
        })
    entries.sort(key=lambda entry: entry["sortOrder"])
    return entries


def plan_document_path(user_id: str) -> str:
    return f"users/{user_id}/plan/active"
