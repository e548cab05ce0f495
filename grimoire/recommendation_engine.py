"""Deterministic crystal recommendation scorer.

Scores every catalog entry by weighted attribute overlap with the resolved
intent keys and the optional user profile, then ranks by score (descending)
and name (ascending). The scorer never raises: missing profile fields simply
contribute nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from grimoire.catalog import CrystalRecord, all_crystals, find_by_name
from grimoire.intent_resolver import normalize_chakra, normalize_zodiac

INTENT_WEIGHT = 4
CHAKRA_WEIGHT = 3
ZODIAC_WEIGHT = 2
MOOD_WEIGHT = 2
ELEMENT_WEIGHT = 1
NAME_MENTION_WEIGHT = 5

DEFAULT_LIMIT = 10
MAX_LIMIT = 25


@dataclass
class UserProfile:
    zodiac_sign: str | None = None
    focus_chakras: list[str] = field(default_factory=list)
    element: str | None = None
    mood: str | None = None
    owned_crystal_names: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, raw: Any) -> "UserProfile":
        """Build a profile from a loosely shaped document; unknown shapes yield an empty profile."""
        if not isinstance(raw, dict):
            return cls()
        focus = raw.get("focus_chakras", raw.get("focusChakra", raw.get("focusChakras")))
        if isinstance(focus, str):
            focus = [focus]
        owned = raw.get("owned_crystal_names", raw.get("ownedCrystalNames"))
        return cls(
            zodiac_sign=raw.get("zodiac_sign", raw.get("zodiacSign")),
            focus_chakras=[str(v) for v in focus or [] if v],
            element=raw.get("element"),
            mood=raw.get("mood"),
            owned_crystal_names=[str(v) for v in owned or [] if v],
        )


@dataclass
class RecommendationEntry:
    crystal: CrystalRecord
    score: int
    matched_intents: set[str] = field(default_factory=set)
    owned: bool = False
    mentioned: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.crystal.id,
            "name": self.crystal.name,
            "score": self.score,
            "matchedIntents": sorted(self.matched_intents),
            "owned": self.owned,
            "chakras": sorted(self.crystal.chakras),
            "healingProperties": sorted(self.crystal.healing_properties),
            "description": self.crystal.description,
        }


def _lower(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).strip().lower().split())


def _profile_chakras(profile: UserProfile | None) -> list[str]:
    if profile is None:
        return []
    chakras: list[str] = []
    for raw in profile.focus_chakras or []:
        if raw is None or not str(raw).strip():
            continue
        chakra = normalize_chakra(raw)
        if chakra not in chakras:
            chakras.append(chakra)
    return chakras


def owned_crystal_ids(profile: UserProfile | None) -> set[str]:
    """Resolve owned crystal names (case-insensitive, alias aware) into catalog ids."""
    ids: set[str] = set()
    if profile is None:
        return ids
    for name in profile.owned_crystal_names or []:
        record = find_by_name(name)
        if record is not None:
            ids.add(record.id)
    return ids


def score_crystal(
    record: CrystalRecord,
    intent_keys: Iterable[str],
    profile: UserProfile | None = None,
    need_text: str | None = None,
) -> tuple[int, set[str]]:
    """Return (score, matched intent keys) for one catalog record."""
    score = 0
    matched: set[str] = set()
    searchable = record.intents | record.keywords | record.healing_properties
    for key in {_lower(k) for k in intent_keys or () if _lower(k)}:
        if key in searchable:
            score += INTENT_WEIGHT
            matched.add(key)

    for chakra in _profile_chakras(profile):
        if chakra in record.chakras:
            score += CHAKRA_WEIGHT

    if profile is not None:
        zodiac = normalize_zodiac(profile.zodiac_sign)
        if zodiac and zodiac in record.zodiac_signs:
            score += ZODIAC_WEIGHT
        mood = _lower(profile.mood)
        if mood and (mood in record.healing_properties or mood in record.keywords):
            score += MOOD_WEIGHT
        element = _lower(profile.element)
        if element and element in record.elements:
            score += ELEMENT_WEIGHT

    need = _lower(need_text)
    if need and _lower(record.name) in need:
        score += NAME_MENTION_WEIGHT

    return score, matched


def _clamp_limit(limit: Any, max_limit: int) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = DEFAULT_LIMIT
    return max(1, min(value, max(1, int(max_limit))))


def _sort_key(entry: RecommendationEntry) -> tuple[bool, int, str]:
    # Crystals named in the need text always rank first.
    return (not entry.mentioned, -entry.score, entry.crystal.name.lower())


def recommend(
    intent_keys: Iterable[str],
    profile: UserProfile | None = None,
    *,
    limit: int = DEFAULT_LIMIT,
    exclude: Iterable[str] = (),
    need_text: str | None = None,
    max_limit: int = MAX_LIMIT,
    catalog: Sequence[CrystalRecord] | None = None,
) -> list[RecommendationEntry]:
    """Rank the catalog for the given intents and profile.

    Positive scores come first; when fewer than ``limit`` records score above
    zero the remainder is backfilled with the best zero-score records so the
    result always holds ``min(limit, pool size)`` entries.
    """
    records = list(catalog) if catalog is not None else all_crystals()
    excluded: set[str] = set()
    for value in exclude or ():
        record = find_by_name(value)
        excluded.add(record.id if record is not None else _lower(value))

    need = _lower(need_text)
    keys = list(intent_keys or ())
    by_id: dict[str, RecommendationEntry] = {}
    for record in records:
        if record.id in excluded:
            continue
        score, matched = score_crystal(record, keys, profile, need_text)
        existing = by_id.get(record.id)
        if existing is None:
            by_id[record.id] = RecommendationEntry(
                crystal=record,
                score=score,
                matched_intents=set(matched),
                mentioned=bool(need) and _lower(record.name) in need,
            )
        else:
            existing.matched_intents |= matched
            existing.score = max(existing.score, score)

    ranked = sorted(by_id.values(), key=_sort_key)
    target = min(_clamp_limit(limit, max_limit), len(ranked))
    positive = [entry for entry in ranked if entry.score > 0]
    selected = positive[:target]
    if len(selected) < target:
        chosen = {entry.crystal.id for entry in selected}
        backfill = [entry for entry in ranked if entry.crystal.id not in chosen]
        selected.extend(backfill[: target - len(selected)])
        selected.sort(key=_sort_key)

    owned_ids = owned_crystal_ids(profile)
    for entry in selected:
        entry.owned = entry.crystal.id in owned_ids
    return selected
