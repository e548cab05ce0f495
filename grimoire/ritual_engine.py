"""Deterministic moon rituals, chakra healing layouts and the daily crystal pick.

Nothing in this module is random: the same phase, chakra list or calendar day
always produces the same output, which keeps the generated rituals
reproducible across devices and in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import pytz

from grimoire.catalog import CrystalRecord, all_crystals, find_by_name, highlighted_crystals
from grimoire.errors import InvalidArgument
from grimoire.intent_resolver import (
    CHAKRA_INTENTS,
    CHAKRA_ORDER,
    normalize_chakra,
    normalize_chakras,
    normalize_phase,
    resolve_intent_keys,
)
from grimoire.recommendation_engine import RecommendationEntry, UserProfile, recommend

SYNODIC_MONTH_DAYS = 29.530589
REFERENCE_NEW_MOON = datetime(2024, 1, 11, 11, 57, tzinfo=pytz.utc)
DAILY_PICK_EPOCH = date(1970, 1, 1)

# (upper bound of cycle fraction, phase, illumination)
_PHASE_BOUNDARIES: tuple[tuple[float, str, float], ...] = (
    (0.0625, "new_moon", 0.0),
    (0.1875, "waxing_crescent", 0.25),
    (0.3125, "first_quarter", 0.5),
    (0.4375, "waxing_gibbous", 0.75),
    (0.5625, "full_moon", 1.0),
    (0.6875, "waning_gibbous", 0.75),
    (0.8125, "last_quarter", 0.5),
    (1.0001, "waning_crescent", 0.25),
)

PHASE_DISPLAY: Mapping[str, tuple[str, str]] = MappingProxyType({
    "new_moon": ("New Moon", "\U0001F311"),
    "waxing_crescent": ("Waxing Crescent", "\U0001F312"),
    "first_quarter": ("First Quarter", "\U0001F313"),
    "waxing_gibbous": ("Waxing Gibbous", "\U0001F314"),
    "full_moon": ("Full Moon", "\U0001F315"),
    "waning_gibbous": ("Waning Gibbous", "\U0001F316"),
    "last_quarter": ("Last Quarter", "\U0001F317"),
    "waning_crescent": ("Waning Crescent", "\U0001F318"),
})

PHASE_TEMPLATE_KEYS: Mapping[str, str] = MappingProxyType({
    "new_moon": "new",
    "waxing_crescent": "waxing",
    "first_quarter": "waxing",
    "waxing_gibbous": "waxing",
    "full_moon": "full",
    "waning_gibbous": "waning",
    "last_quarter": "waning",
    "waning_crescent": "waning",
})


@dataclass(frozen=True)
class RitualTemplate:
    key: str
    focus: str
    intents: tuple[str, ...]
    steps: tuple[str, ...]
    affirmation: str
    journal_prompts: tuple[str, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "template": self.key,
            "focus": self.focus,
            "intents": list(self.intents),
            "steps": list(self.steps),
            "affirmation": self.affirmation,
            "journalPrompts": list(self.journal_prompts),
        }


RITUAL_TEMPLATES: Mapping[str, RitualTemplate] = MappingProxyType({
    "new": RitualTemplate(
        key="new",
        focus="Set intentions and plant seeds for the cycle ahead.",
        intents=("transformation", "clarity", "abundance"),
        steps=(
            "Cleanse your space with smoke, sound or a selenite wand.",
            "Hold your chosen crystal and breathe slowly for nine breaths.",
            "Write three intentions in the present tense.",
            "Place the crystal on your written intentions overnight.",
        ),
        affirmation="I welcome new beginnings and trust the path unfolding before me.",
        journal_prompts=(
            "What do I want to call into my life this cycle?",
            "Which habit will support my intention every day?",
        ),
    ),
    "waxing": RitualTemplate(
        key="waxing",
        focus="Build momentum and take aligned action.",
        intents=("focus", "creativity", "abundance"),
        steps=(
            "Revisit the intentions you set at the new moon.",
            "Hold your crystal at the solar plexus and name one next step.",
            "Take that step today, however small.",
            "Recharge the crystal on a windowsill in the evening light.",
        ),
        affirmation="My energy grows with every step I take toward my goals.",
        journal_prompts=(
            "Where is momentum building in my life?",
            "What support do I need to keep going?",
        ),
    ),
    "full": RitualTemplate(
        key="full",
        focus="Celebrate, release what no longer serves, and recharge.",
        intents=("intuition", "protection", "balance"),
        steps=(
            "Lay your crystals where the moonlight can reach them.",
            "Write down what you are ready to release.",
            "Read it aloud, then safely burn or tear the page.",
            "Sit with your crystal and give thanks for what has grown.",
        ),
        affirmation="I release with gratitude and make room for abundance.",
        journal_prompts=(
            "What has come to fruition since the new moon?",
            "What am I ready to let go of?",
        ),
    ),
    "waning": RitualTemplate(
        key="waning",
        focus="Rest, reflect and clear stagnant energy.",
        intents=("grounding", "sleep", "healing"),
        steps=(
            "Cleanse your crystals under running water or with smoke.",
            "Hold a grounding stone and scan the body from crown to feet.",
            "Note where you feel heavy and breathe into that place.",
            "Keep the stone beside the bed while you rest.",
        ),
        affirmation="I honour my need for rest and trust the quiet before renewal.",
        journal_prompts=(
            "What lessons did this cycle teach me?",
            "What can I simplify before the next new moon?",
        ),
    ),
})

CHAKRA_PLACEMENTS: Mapping[str, str] = MappingProxyType({
    "root": "Place at the base of the spine or between the feet.",
    "sacral": "Place just below the navel.",
    "solar_plexus": "Place above the navel, below the ribcage.",
    "heart": "Place at the centre of the chest.",
    "throat": "Place at the hollow of the throat.",
    "third_eye": "Place on the forehead between the brows.",
    "crown": "Place just above the top of the head.",
})


@dataclass
class PlacementStep:
    order: int
    chakra: str
    crystal: CrystalRecord
    placement: str
    source: str
    owned: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "chakra": self.chakra,
            "crystalId": self.crystal.id,
            "crystalName": self.crystal.name,
            "placement": self.placement,
            "source": self.source,
            "owned": self.owned,
        }


def calculate_moon_phase(now: datetime | None = None) -> dict[str, Any]:
    """Approximate the current lunar phase from a reference new moon."""
    current = now or datetime.now(pytz.utc)
    if current.tzinfo is None:
        current = pytz.utc.localize(current)
    days_since = (current - REFERENCE_NEW_MOON).total_seconds() / 86400.0
    cycle = (days_since % SYNODIC_MONTH_DAYS) / SYNODIC_MONTH_DAYS

    phase, illumination = "waning_crescent", 0.25
    for upper, name, light in _PHASE_BOUNDARIES:
        if cycle < upper:
            phase, illumination = name, light
            break

    def _next(target: float) -> str:
        fraction = target - cycle if target >= cycle else 1.0 - cycle + target
        moment = current + timedelta(days=fraction * SYNODIC_MONTH_DAYS)
        return moment.astimezone(pytz.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

    display, emoji = PHASE_DISPLAY[phase]
    return {
        "phase": phase,
        "displayName": display,
        "emoji": emoji,
        "illumination": illumination,
        "cycleFraction": round(cycle, 4),
        "timestamp": current.astimezone(pytz.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "nextFullMoon": _next(0.5),
        "nextNewMoon": _next(0.0),
    }


def get_moon_ritual(phase: Any) -> RitualTemplate:
    canonical = normalize_phase(phase)
    if canonical is None:
        raise InvalidArgument(f"Unknown moon phase: {phase!r}")
    return RITUAL_TEMPLATES[PHASE_TEMPLATE_KEYS[canonical]]


def build_moon_ritual(
    phase: Any,
    profile: UserProfile | None = None,
    *,
    intention: str | None = None,
    limit: int = 3,
) -> dict[str, Any]:
    """Ritual template for the phase plus crystals scored against its intents."""
    canonical = normalize_phase(phase)
    template = get_moon_ritual(phase)
    intents = set(template.intents)
    if intention:
        intents |= resolve_intent_keys([intention])
    suggestions = recommend(intents, profile, limit=limit, need_text=intention)
    display, emoji = PHASE_DISPLAY[canonical]
    payload = template.to_payload()
    payload.update({
        "phase": canonical,
        "displayName": display,
        "emoji": emoji,
        "intention": intention or None,
        "crystals": [entry.to_payload() for entry in suggestions],
    })
    return payload


def _first_unused(entries: Iterable[RecommendationEntry], used: set[str]) -> CrystalRecord | None:
    for entry in entries:
        if entry.score > 0 and entry.crystal.id not in used:
            return entry.crystal
    return None


def get_healing_layout(
    chakra_keys: Iterable[Any] | None,
    available_crystal_names: Iterable[Any] | None = None,
    profile: UserProfile | None = None,
) -> list[PlacementStep]:
    """Assign one distinct crystal to each requested chakra.

    Preference order per chakra: a crystal from the caller's collection that
    covers the chakra, then the best unused recommendation for the chakra's
    intent, then the first unused catalog entry.
    """
    chakras = normalize_chakras(chakra_keys) or list(CHAKRA_ORDER)
    available: list[CrystalRecord] = []
    for name in available_crystal_names or ():
        record = find_by_name(name)
        if record is not None and record not in available:
            available.append(record)
    available_ids = {record.id for record in available}

    catalog = all_crystals()
    used: set[str] = set()
    steps: list[PlacementStep] = []
    for order, chakra in enumerate(chakras, start=1):
        crystal = next(
            (record for record in available if chakra in record.chakras and record.id not in used),
            None,
        )
        source = "collection"
        if crystal is None:
            chakra_profile = UserProfile(
                zodiac_sign=profile.zodiac_sign if profile else None,
                focus_chakras=[chakra],
                element=profile.element if profile else None,
                mood=profile.mood if profile else None,
            )
            ranked = recommend(
                [CHAKRA_INTENTS[chakra]],
                chakra_profile,
                limit=len(catalog),
                max_limit=len(catalog),
            )
            crystal = _first_unused(ranked, used)
            source = "recommended"
        if crystal is None:
            crystal = next((record for record in catalog if record.id not in used), catalog[0])
            source = "fallback"
        used.add(crystal.id)
        steps.append(
            PlacementStep(
                order=order,
                chakra=chakra,
                crystal=crystal,
                placement=CHAKRA_PLACEMENTS[chakra],
                source=source,
                owned=crystal.id in available_ids,
            )
        )
    return steps


def _as_date(today: Any) -> date:
    if today is None:
        return datetime.now(pytz.utc).date()
    if isinstance(today, datetime):
        if today.tzinfo is not None:
            today = today.astimezone(pytz.utc)
        return today.date()
    if isinstance(today, date):
        return today
    try:
        return date.fromisoformat(str(today).strip())
    except ValueError as exc:
        raise InvalidArgument(f"Invalid date: {today!r}") from exc


def _narrow_pool(
    pool: list[CrystalRecord],
    *,
    intent: Any = None,
    chakra: Any = None,
    mood: Any = None,
) -> list[CrystalRecord]:
    narrowed = pool
    if intent:
        keys = resolve_intent_keys([intent])
        narrowed = [r for r in narrowed if keys & (r.intents | r.keywords | r.healing_properties)]
    if chakra:
        canonical = normalize_chakra(chakra)
        narrowed = [r for r in narrowed if canonical in r.chakras]
    if mood:
        keys = resolve_intent_keys([mood])
        mood_term = str(mood).strip().lower()
        narrowed = [
            r for r in narrowed
            if keys & r.intents or mood_term in r.healing_properties or mood_term in r.keywords
        ]
    return narrowed or pool


def get_daily_crystal(
    today: Any = None,
    *,
    intent: Any = None,
    chakra: Any = None,
    mood: Any = None,
) -> dict[str, Any]:
    """Pick the crystal of the day; stable for a UTC calendar day and filter set."""
    day = _as_date(today)
    base_pool = highlighted_crystals() or all_crystals()
    pool = _narrow_pool(base_pool, intent=intent, chakra=chakra, mood=mood)
    day_index = (day - DAILY_PICK_EPOCH).days
    crystal = pool[day_index % len(pool)]
    payload = crystal.to_payload()
    payload.update({
        "date": day.isoformat(),
        "dayIndex": day_index,
        "dayOfYear": day.timetuple().tm_yday,
        "poolSize": len(pool),
        "filters": {"intent": intent or None, "chakra": chakra or None, "mood": mood or None},
    })
    return payload
