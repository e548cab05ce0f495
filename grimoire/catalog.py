"""Static crystal catalog and name/alias lookup.

The catalog is reference data: it is declared once at import time, indexed by
id, name and alias, and never mutated afterwards. Declaration order is the
stable order used by the daily pick rotation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable


def _normalize_name(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).strip().lower().split())


def _lower_set(values: Iterable[str]) -> frozenset[str]:
    return frozenset(_normalize_name(v) for v in values if _normalize_name(v))


@dataclass(frozen=True)
class CareInstructions:
    cleansing: tuple[str, ...] = ()
    charging: tuple[str, ...] = ()
    storage: tuple[str, ...] = ()
    usage: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, list[str]]:
        return {
            "cleansing": list(self.cleansing),
            "charging": list(self.charging),
            "storage": list(self.storage),
            "usage": list(self.usage),
        }


@dataclass(frozen=True)
class CrystalRecord:
    id: str
    name: str
    aliases: frozenset[str] = frozenset()
    intents: frozenset[str] = frozenset()
    keywords: frozenset[str] = frozenset()
    chakras: frozenset[str] = frozenset()
    zodiac_signs: frozenset[str] = frozenset()
    elements: frozenset[str] = frozenset()
    healing_properties: frozenset[str] = frozenset()
    care_instructions: CareInstructions = field(default_factory=CareInstructions)
    highlight: bool = False
    description: str = ""
    scientific_name: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "aliases": sorted(self.aliases),
            "intents": sorted(self.intents),
            "keywords": sorted(self.keywords),
            "chakras": sorted(self.chakras),
            "zodiacSigns": sorted(self.zodiac_signs),
            "elements": sorted(self.elements),
            "healingProperties": sorted(self.healing_properties),
            "careInstructions": self.care_instructions.to_payload(),
            "highlight": self.highlight,
            "description": self.description,
            "scientificName": self.scientific_name,
        }


def _crystal(
    crystal_id: str,
    name: str,
    *,
    aliases: Iterable[str] = (),
    intents: Iterable[str] = (),
    keywords: Iterable[str] = (),
    chakras: Iterable[str] = (),
    zodiac: Iterable[str] = (),
    elements: Iterable[str] = (),
    healing: Iterable[str] = (),
    cleansing: Iterable[str] = (),
    charging: Iterable[str] = (),
    storage: Iterable[str] = (),
    usage: Iterable[str] = (),
    highlight: bool = False,
    description: str = "",
    scientific_name: str = "",
) -> CrystalRecord:
    return CrystalRecord(
        id=crystal_id,
        name=name,
        aliases=_lower_set(aliases),
        intents=_lower_set(intents),
        keywords=_lower_set(keywords),
        chakras=_lower_set(chakras),
        zodiac_signs=_lower_set(zodiac),
        elements=_lower_set(elements),
        healing_properties=_lower_set(healing),
        care_instructions=CareInstructions(
            cleansing=tuple(cleansing),
            charging=tuple(charging),
            storage=tuple(storage),
            usage=tuple(usage),
        ),
        highlight=highlight,
        description=description,
        scientific_name=scientific_name,
    )


CRYSTAL_CATALOG: tuple[CrystalRecord, ...] = (
    _crystal(
        "clear-quartz",
        "Clear Quartz",
        aliases=["Rock Crystal", "Master Healer"],
        intents=["clarity", "healing", "focus", "transformation"],
        keywords=["amplification", "manifestation", "energy", "purification"],
        chakras=["crown"],
        zodiac=["aries", "leo"],
        elements=["spirit", "air"],
        healing=["amplifies energy", "clarity", "spiritual growth", "healing"],
        cleansing=["Running water", "Moonlight", "Sage smoke", "Sound vibrations"],
        charging=["Sunlight", "Full moon", "Crystal clusters"],
        storage=["Keep points wrapped in soft cloth to protect terminations"],
        usage=["Program with a single intention before meditation"],
        highlight=True,
        description="The master healer that amplifies energy and intentions.",
        scientific_name="Silicon Dioxide (SiO2)",
    ),
    _crystal(
        "amethyst",
        "Amethyst",
        aliases=["Purple Quartz", "Stone of Sobriety"],
        intents=["intuition", "protection", "anxiety", "sleep"],
        keywords=["meditation", "peace", "spiritual protection", "dream work"],
        chakras=["crown", "third_eye"],
        zodiac=["pisces", "virgo", "aquarius", "capricorn"],
        elements=["air", "water"],
        healing=["calm", "calms the mind", "stress relief", "enhances intuition"],
        cleansing=["Moonlight", "Sage smoke", "Sound cleansing"],
        charging=["Full moon", "Amethyst clusters", "Meditation"],
        storage=["Avoid prolonged sunlight, the colour may fade"],
        usage=["Place under the pillow for restful sleep"],
        highlight=True,
        description="A calming stone for spiritual growth, protection and clarity.",
        scientific_name="Silicon Dioxide (SiO2)",
    ),
    _crystal(
        "rose-quartz",
        "Rose Quartz",
        aliases=["Love Stone", "Heart Stone"],
        intents=["love", "healing", "balance"],
        keywords=["self-love", "compassion", "forgiveness", "relationships"],
        chakras=["heart"],
        zodiac=["taurus", "libra"],
        elements=["earth", "water"],
        healing=["compassion", "emotional healing", "self-love", "calm"],
        cleansing=["Running water", "Moonlight", "Rose petals"],
        charging=["Dawn sunlight", "Full moon", "Heart meditation"],
        storage=["Keep away from harsh chemicals and direct sun"],
        usage=["Hold over the heart during loving-kindness practice"],
        highlight=True,
        description="The stone of unconditional love and infinite peace.",
        scientific_name="Silicon Dioxide (SiO2)",
    ),
    _crystal(
        "black-tourmaline",
        "Black Tourmaline",
        aliases=["Schorl", "Protection Stone"],
        intents=["protection", "grounding", "anxiety"],
        keywords=["emf protection", "cleansing", "stability", "shielding"],
        chakras=["root"],
        zodiac=["capricorn", "scorpio"],
        elements=["earth"],
        healing=["absorbs negative energy", "grounding", "anxiety relief"],
        cleansing=["Running water", "Earth burial", "Sage smoke"],
        charging=["Earth connection", "Hematite", "Root chakra meditation"],
        storage=["Store apart from softer stones, it can scratch them"],
        usage=["Place by the front door or near electronics"],
        highlight=True,
        description="A powerful grounding stone that shields from negative energy.",
        scientific_name="Sodium Iron Aluminum Borosilicate",
    ),
    _crystal(
        "citrine",
        "Citrine",
        aliases=["Success Stone", "Merchant Stone"],
        intents=["abundance", "creativity", "focus"],
        keywords=["success", "confidence", "manifestation", "joy", "prosperity"],
        chakras=["solar_plexus", "sacral"],
        zodiac=["gemini", "aries", "leo", "libra"],
        elements=["fire"],
        healing=["boosts confidence", "attracts abundance", "motivation", "joy"],
        cleansing=["Sunlight", "Running water", "Citrine clusters"],
        charging=["Sunlight", "Citrine clusters", "Success meditation"],
        storage=["Most citrine is heat-treated amethyst, keep it out of heat"],
        usage=["Keep in a cash box or on the desk while working"],
        highlight=True,
        description="The merchant's stone that attracts wealth and success.",
        scientific_name="Silicon Dioxide (SiO2)",
    ),
    _crystal(
        "moonstone",
        "Moonstone",
        aliases=["Moon Stone", "Feminine Stone"],
        intents=["intuition", "balance", "transformation"],
        keywords=["new beginnings", "cycles", "feminine energy", "moon rituals"],
        chakras=["crown", "third_eye", "sacral"],
        zodiac=["cancer", "libra", "scorpio"],
        elements=["water"],
        healing=["balances emotions", "inner wisdom", "nurturing", "calm"],
        cleansing=["Moonlight", "Sage smoke", "Spring water"],
        charging=["Full moon", "Moonlight meditation", "Lunar rituals"],
        storage=["Softer stone, keep separate from quartz"],
        usage=["Wear during the waxing moon to welcome new beginnings"],
        highlight=True,
        description="A lunar stone of cycles, intuition and new beginnings.",
        scientific_name="Potassium Aluminum Silicate",
    ),
    _crystal(
        "selenite",
        "Selenite",
        aliases=["Satin Spar", "Liquid Light"],
        intents=["clarity", "protection", "sleep"],
        keywords=["cleansing", "charging", "spiritual connection", "peace"],
        chakras=["crown", "third_eye"],
        zodiac=["taurus", "cancer"],
        elements=["air"],
        healing=["cleanses energy", "peace", "mental clarity"],
        cleansing=["Self-cleansing", "Moonlight", "Sound"],
        charging=["Moonlight"],
        storage=["Never submerge in water, it dissolves"],
        usage=["Rest other crystals on a selenite plate overnight"],
        highlight=True,
        description="A high-vibration crystal that cleanses and charges other stones.",
        scientific_name="Gypsum (CaSO4·2H2O)",
    ),
    _crystal(
        "labradorite",
        "Labradorite",
        aliases=["Spectrolite", "Stone of Magic"],
        intents=["transformation", "intuition", "protection"],
        keywords=["change", "magic", "aura", "courage"],
        chakras=["third_eye", "throat"],
        zodiac=["leo", "scorpio", "sagittarius"],
        elements=["water", "air"],
        healing=["strengthens intuition", "shields the aura", "transformation"],
        cleansing=["Moonlight", "Smoke", "Sound"],
        charging=["Moonlight", "Meditation"],
        storage=["Wrap separately to protect the labradorescence"],
        usage=["Carry through periods of change"],
        highlight=False,
        description="A stone of magic that reveals inner light during change.",
        scientific_name="Calcium Sodium Feldspar",
    ),
    _crystal(
        "carnelian",
        "Carnelian",
        aliases=["Cornelian", "Artist's Stone"],
        intents=["creativity", "focus", "abundance"],
        keywords=["motivation", "courage", "vitality", "passion"],
        chakras=["sacral", "root"],
        zodiac=["aries", "leo", "virgo"],
        elements=["fire"],
        healing=["vitality", "motivation", "courage", "creative flow"],
        cleansing=["Running water", "Sunlight"],
        charging=["Sunlight", "Quartz cluster"],
        storage=["Store with other tumbled stones"],
        usage=["Keep in the studio or on the workspace"],
        highlight=False,
        description="A fiery stone that restores vitality and creative drive.",
        scientific_name="Chalcedony (SiO2)",
    ),
    _crystal(
        "smoky-quartz",
        "Smoky Quartz",
        aliases=["Morion", "Cairngorm"],
        intents=["grounding", "protection", "anxiety"],
        keywords=["detox", "release", "stability", "stress"],
        chakras=["root"],
        zodiac=["capricorn", "sagittarius"],
        elements=["earth"],
        healing=["releases stress", "grounding", "calm"],
        cleansing=["Running water", "Earth burial"],
        charging=["Earth connection", "Full moon"],
        storage=["Keep points upright in a dish"],
        usage=["Hold while breathing out tension at day's end"],
        highlight=False,
        description="A grounding quartz that gently transmutes heavy energy.",
        scientific_name="Silicon Dioxide (SiO2)",
    ),
    _crystal(
        "lapis-lazuli",
        "Lapis Lazuli",
        aliases=["Lapis", "Wisdom Stone"],
        intents=["communication", "intuition", "clarity"],
        keywords=["truth", "wisdom", "self-expression", "insight"],
        chakras=["throat", "third_eye"],
        zodiac=["sagittarius", "libra"],
        elements=["water"],
        healing=["honest communication", "wisdom", "self-expression"],
        cleansing=["Smoke", "Sound", "Moonlight"],
        charging=["Moonlight", "Meditation"],
        storage=["Avoid water and salt, both dull the polish"],
        usage=["Wear near the throat before difficult conversations"],
        highlight=True,
        description="A royal stone of truth, wisdom and self-expression.",
        scientific_name="Lazurite rock",
    ),
    _crystal(
        "green-aventurine",
        "Green Aventurine",
        aliases=["Aventurine", "Stone of Opportunity"],
        intents=["abundance", "love", "healing"],
        keywords=["luck", "opportunity", "prosperity", "growth"],
        chakras=["heart"],
        zodiac=["taurus", "virgo"],
        elements=["earth"],
        healing=["optimism", "emotional healing", "luck"],
        cleansing=["Running water", "Moonlight"],
        charging=["Sunlight", "Plants and soil"],
        storage=["Store with other tumbled stones"],
        usage=["Carry in a wallet or plant near seedlings"],
        highlight=False,
        description="The stone of opportunity that invites luck and growth.",
        scientific_name="Quartzite with fuchsite",
    ),
    _crystal(
        "tigers-eye",
        "Tiger's Eye",
        aliases=["Tigers Eye", "Tiger Eye"],
        intents=["focus", "protection", "abundance"],
        keywords=["confidence", "willpower", "courage", "success"],
        chakras=["solar_plexus", "sacral"],
        zodiac=["leo", "capricorn"],
        elements=["fire", "earth"],
        healing=["confidence", "willpower", "courage"],
        cleansing=["Running water", "Sunlight"],
        charging=["Sunlight"],
        storage=["Keep polished stones apart from harder quartz"],
        usage=["Hold before presentations or decisions"],
        highlight=False,
        description="A golden stone of courage, willpower and clear decisions.",
        scientific_name="Chatoyant quartz",
    ),
    _crystal(
        "hematite",
        "Hematite",
        aliases=["Bloodstone Ore", "Iron Rose"],
        intents=["grounding", "focus", "protection"],
        keywords=["stability", "strength", "concentration"],
        chakras=["root"],
        zodiac=["aries", "aquarius"],
        elements=["earth", "fire"],
        healing=["grounding", "concentration", "stability"],
        cleansing=["Smoke", "Sound"],
        charging=["Earth connection"],
        storage=["Keep dry, it can rust"],
        usage=["Hold in each hand during grounding breathwork"],
        highlight=False,
        description="A heavy metallic stone that anchors scattered energy.",
        scientific_name="Iron Oxide (Fe2O3)",
    ),
    _crystal(
        "lepidolite",
        "Lepidolite",
        aliases=["Lithia Mica", "Stone of Transition"],
        intents=["anxiety", "sleep", "balance"],
        keywords=["stress", "transition", "peace", "mood"],
        chakras=["heart", "crown", "third_eye"],
        zodiac=["libra"],
        elements=["water", "air"],
        healing=["calm", "stress relief", "emotional balance"],
        cleansing=["Smoke", "Sound", "Selenite plate"],
        charging=["Moonlight"],
        storage=["Flaky mica, avoid water and friction"],
        usage=["Keep on the nightstand during stressful weeks"],
        highlight=False,
        description="A soothing lithium-bearing stone for transitions and rest.",
        scientific_name="Lithium Mica",
    ),
    _crystal(
        "blue-lace-agate",
        "Blue Lace Agate",
        aliases=["Lace Agate", "Blue Agate"],
        intents=["communication", "anxiety", "balance"],
        keywords=["expression", "serenity", "peace", "truth"],
        chakras=["throat"],
        zodiac=["gemini", "pisces"],
        elements=["water", "air"],
        healing=["calm", "gentle expression", "serenity"],
        cleansing=["Running water", "Moonlight"],
        charging=["Moonlight"],
        storage=["Store with other tumbled stones"],
        usage=["Wear at the throat to speak calmly"],
        highlight=False,
        description="A gentle banded agate that calms and softens speech.",
        scientific_name="Chalcedony (SiO2)",
    ),
    _crystal(
        "fluorite",
        "Fluorite",
        aliases=["Rainbow Fluorite", "Genius Stone"],
        intents=["focus", "clarity", "balance"],
        keywords=["study", "organization", "concentration", "learning"],
        chakras=["third_eye", "heart", "throat"],
        zodiac=["pisces", "capricorn"],
        elements=["air"],
        healing=["mental clarity", "concentration", "order"],
        cleansing=["Smoke", "Sound"],
        charging=["Moonlight"],
        storage=["Soft and brittle, keep wrapped"],
        usage=["Keep on the desk while studying"],
        highlight=False,
        description="The genius stone that brings order to scattered thoughts.",
        scientific_name="Calcium Fluoride (CaF2)",
    ),
)


def _build_name_index(records: Iterable[CrystalRecord]) -> dict[str, CrystalRecord]:
    index: dict[str, CrystalRecord] = {}
    seen_ids: set[str] = set()
    for record in records:
        if record.id in seen_ids:
            raise ValueError(f"Duplicate crystal id in catalog: {record.id}")
        seen_ids.add(record.id)
        keys = {_normalize_name(record.name), _normalize_name(record.id)}
        keys.update(record.aliases)
        for key in keys:
            owner = index.get(key)
            if owner is not None and owner.id != record.id:
                raise ValueError(f"Crystal lookup key '{key}' shared by {owner.id} and {record.id}")
            index[key] = record
    return index


_NAME_INDEX = _build_name_index(CRYSTAL_CATALOG)
_ID_INDEX = {record.id: record for record in CRYSTAL_CATALOG}


def find_by_name(name: Any) -> CrystalRecord | None:
    """Resolve a display name, id slug or alias; unknown names return None."""
    key = _normalize_name(name)
    if not key:
        return None
    return _NAME_INDEX.get(key)


def find_by_id(crystal_id: Any) -> CrystalRecord | None:
    if not isinstance(crystal_id, str):
        return None
    return _ID_INDEX.get(crystal_id.strip().lower())


def all_crystals() -> list[CrystalRecord]:
    return list(CRYSTAL_CATALOG)


def highlighted_crystals() -> list[CrystalRecord]:
    return [record for record in CRYSTAL_CATALOG if record.highlight]
