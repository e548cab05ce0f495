"""Normalize free-text needs, moods, chakras, zodiac signs and moon phases.

Every function here degrades gracefully: unknown input is dropped or mapped to
a named default policy, never raised as an error.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

# Vocabulary order matters: substring matching returns the first hit.
INTENT_KEYS: tuple[str, ...] = (
    "grounding",
    "love",
    "protection",
    "creativity",
    "abundance",
    "clarity",
    "sleep",
    "anxiety",
    "focus",
    "intuition",
    "transformation",
    "balance",
    "healing",
    "communication",
)

DEFAULT_INTENT = "balance"

INTENT_ALIASES: dict[str, str] = {
    "stress": "anxiety",
    "stressed": "anxiety",
    "worry": "anxiety",
    "worried": "anxiety",
    "panic": "anxiety",
    "nervous": "anxiety",
    "calm": "anxiety",
    "calming": "anxiety",
    "peace": "balance",
    "harmony": "balance",
    "stability": "grounding",
    "grounded": "grounding",
    "earth": "grounding",
    "money": "abundance",
    "wealth": "abundance",
    "prosperity": "abundance",
    "success": "abundance",
    "career": "abundance",
    "luck": "abundance",
    "romance": "love",
    "relationship": "love",
    "relationships": "love",
    "heartbreak": "love",
    "self-love": "love",
    "compassion": "love",
    "shield": "protection",
    "negativity": "protection",
    "safety": "protection",
    "art": "creativity",
    "inspiration": "creativity",
    "passion": "creativity",
    "insomnia": "sleep",
    "rest": "sleep",
    "dreams": "sleep",
    "tired": "sleep",
    "concentration": "focus",
    "study": "focus",
    "productivity": "focus",
    "motivation": "focus",
    "psychic": "intuition",
    "spiritual": "intuition",
    "meditation": "intuition",
    "change": "transformation",
    "growth": "transformation",
    "new beginnings": "transformation",
    "clear": "clarity",
    "confusion": "clarity",
    "wisdom": "clarity",
    "health": "healing",
    "recovery": "healing",
    "grief": "healing",
    "speak": "communication",
    "truth": "communication",
    "expression": "communication",
    "sad": "healing",
    "angry": "balance",
    "overwhelmed": "anxiety",
    "scattered": "grounding",
}

CHAKRA_ORDER: tuple[str, ...] = (
    "root",
    "sacral",
    "solar_plexus",
    "heart",
    "throat",
    "third_eye",
    "crown",
)

DEFAULT_CHAKRA = "root"

CHAKRA_ALIASES: dict[str, str] = {
    "root": "root",
    "base": "root",
    "muladhara": "root",
    "sacral": "sacral",
    "svadhisthana": "sacral",
    "swadhisthana": "sacral",
    "solar plexus": "solar_plexus",
    "solar": "solar_plexus",
    "manipura": "solar_plexus",
    "heart": "heart",
    "anahata": "heart",
    "throat": "throat",
    "vishuddha": "throat",
    "third eye": "third_eye",
    "3rd eye": "third_eye",
    "brow": "third_eye",
    "ajna": "third_eye",
    "crown": "crown",
    "sahasrara": "crown",
}

CHAKRA_INTENTS: dict[str, str] = {
    "root": "grounding",
    "sacral": "creativity",
    "solar_plexus": "focus",
    "heart": "love",
    "throat": "communication",
    "third_eye": "intuition",
    "crown": "clarity",
}

ZODIAC_SIGNS: tuple[str, ...] = (
    "aries", "taurus", "gemini", "cancer", "leo", "virgo",
    "libra", "scorpio", "sagittarius", "capricorn", "aquarius", "pisces",
)

MOON_PHASES: tuple[str, ...] = (
    "new_moon",
    "waxing_crescent",
    "first_quarter",
    "waxing_gibbous",
    "full_moon",
    "waning_gibbous",
    "last_quarter",
    "waning_crescent",
)

PHASE_ALIASES: dict[str, str] = {
    "new": "new_moon",
    "dark moon": "new_moon",
    "\U0001F311": "new_moon",
    "waxing crescent": "waxing_crescent",
    "\U0001F312": "waxing_crescent",
    "first quarter": "first_quarter",
    "\U0001F313": "first_quarter",
    "waxing": "waxing_gibbous",
    "waxing gibbous": "waxing_gibbous",
    "\U0001F314": "waxing_gibbous",
    "full": "full_moon",
    "\U0001F315": "full_moon",
    "waning gibbous": "waning_gibbous",
    "\U0001F316": "waning_gibbous",
    "waning": "waning_gibbous",
    "last quarter": "last_quarter",
    "third quarter": "last_quarter",
    "\U0001F317": "last_quarter",
    "waning crescent": "waning_crescent",
    "balsamic": "waning_crescent",
    "\U0001F318": "waning_crescent",
}

_WORD_RE = re.compile(r"[a-z][a-z'\-]*")
_SEPARATOR_RE = re.compile(r"[\s\-]+")
_PHRASE_ALIASES = tuple(alias for alias in INTENT_ALIASES if " " in alias)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).strip().lower().split())


def _match_single(term: str, *, allow_fuzzy: bool = True) -> str | None:
    if not term:
        return None
    if term in INTENT_KEYS:
        return term
    alias = INTENT_ALIASES.get(term)
    if alias:
        return alias
    if allow_fuzzy:
        for key in INTENT_KEYS:
            if term in key:
                return key
    return None


def resolve_intent_keys(raw_inputs: Iterable[Any] | None) -> set[str]:
    """Resolve raw needs/moods into canonical intent keys (never empty)."""
    resolved: set[str] = set()
    for raw in raw_inputs or ():
        term = _clean(raw)
        if not term:
            continue
        match = _match_single(term)
        if match:
            resolved.add(match)
            continue
        tokens = _WORD_RE.findall(term)
        if len(tokens) <= 1:
            continue
        # Words inside free text only match exactly or by alias; substring
        # matching is reserved for a whole single-term input.
        for token in tokens:
            token_match = _match_single(token, allow_fuzzy=False)
            if token_match:
                resolved.add(token_match)
        padded = f" {' '.join(tokens)} "
        for phrase in _PHRASE_ALIASES:
            if f" {phrase} " in padded:
                resolved.add(INTENT_ALIASES[phrase])
    if not resolved:
        resolved.add(DEFAULT_INTENT)
    return resolved


def normalize_chakra(raw: Any) -> str:
    """Map a chakra name or Sanskrit alias to its canonical key (default root)."""
    key = _clean(raw)
    if not key:
        return DEFAULT_CHAKRA
    if key in CHAKRA_ALIASES:
        return CHAKRA_ALIASES[key]
    compact = _SEPARATOR_RE.sub("_", key)
    if compact in CHAKRA_ORDER:
        return compact
    spaced = compact.replace("_", " ")
    if spaced in CHAKRA_ALIASES:
        return CHAKRA_ALIASES[spaced]
    stripped = key.replace(" ", "")
    for alias, canonical in CHAKRA_ALIASES.items():
        if alias.replace(" ", "") == stripped:
            return canonical
    return DEFAULT_CHAKRA


def normalize_chakras(raw_values: Iterable[Any] | None) -> list[str]:
    """Normalize and de-duplicate chakra names, keeping first-seen order."""
    seen: list[str] = []
    for raw in raw_values or ():
        if raw is None or not str(raw).strip():
            continue
        chakra = normalize_chakra(raw)
        if chakra not in seen:
            seen.append(chakra)
    return seen


def normalize_zodiac(raw: Any) -> str | None:
    key = _clean(raw)
    return key if key in ZODIAC_SIGNS else None


def normalize_phase(raw: Any) -> str | None:
    key = _clean(raw)
    if not key:
        return None
    if key in PHASE_ALIASES:
        return PHASE_ALIASES[key]
    compact = _SEPARATOR_RE.sub("_", key)
    if compact in MOON_PHASES:
        return compact
    spaced = compact.replace("_", " ")
    if spaced in PHASE_ALIASES:
        return PHASE_ALIASES[spaced]
    if spaced.endswith(" moon"):
        return PHASE_ALIASES.get(spaced[: -len(" moon")])
    return None
