"""Generative-AI collaborator: OpenAI transport, JSON parsing and the three AI features.

Identification fails loudly when the model output cannot be parsed. Guidance
and dream analysis always answer: when the model is unavailable or returns
garbage they fall back to the deterministic recommendation scorer.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from datetime import datetime
from typing import Any, Optional, Sequence

import httpx
import pytz
from openai import AsyncOpenAI

from grimoire.catalog import CrystalRecord, find_by_name
from grimoire.config import Settings, _first_nonempty_env
from grimoire.document_store import DocumentStore
from grimoire.errors import FailedPrecondition, GrimoireError, Internal, InvalidArgument
from grimoire.intent_resolver import normalize_phase, resolve_intent_keys
from grimoire.prompts import (
    DREAM_PROMPT_TEMPLATE,
    DREAM_SYSTEM_PROMPT,
    GUIDANCE_PROMPT_TEMPLATE,
    GUIDANCE_SYSTEM_PROMPT,
    IDENTIFY_PROMPT,
    IDENTIFY_SYSTEM_PROMPT,
)
from grimoire.recommendation_engine import RecommendationEntry, UserProfile, recommend

logger = logging.getLogger("crystal_grimoire")
ai_audit_logger = logging.getLogger("ai_audit")

DEFAULT_FALLBACK_MODELS = ("gpt-4o-mini", "gpt-4o")
IDENTIFY_MAX_TOKENS = 2048
GUIDANCE_MAX_TOKENS = 1024
DREAM_MAX_TOKENS = 1024
STORED_IMAGE_PREFIX_CHARS = 100

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def _utc_iso_now() -> str:
    return datetime.now(pytz.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _sha256_hex(value: Any) -> str:
    return hashlib.sha256(_canonical_json(value).encode("utf-8")).hexdigest()


def _emit_ai_audit_event(
    *,
    request_id: str,
    prompt_hash: str,
    model_used: str,
    endpoint: str,
    response_length: int,
) -> dict[str, Any]:
    event = {
        "request_id": request_id,
        "prompt_hash": prompt_hash,
        "timestamp_utc": _utc_iso_now(),
        "model_used": model_used,
        "endpoint": endpoint,
        "response_length": response_length,
    }
    ai_audit_logger.info(_canonical_json(event))
    return event


def _build_user_content(prompt: str, image_base64: Optional[str]) -> Any:
    if not image_base64:
        return prompt
    image = image_base64.strip()
    if not image.startswith("data:"):
        image = f"data:image/jpeg;base64,{image}"
    return [
        {"type": "text", "text": prompt},
        {"type": "image_url", "image_url": {"url": image}},
    ]


class GenerativeClient:
    """Thin wrapper over AsyncOpenAI with a per-call timeout and model fallback."""

    def __init__(
        self,
        client: Any,
        *,
        model: str,
        fallback_models: Sequence[str] = (),
        timeout_sec: float = 45.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client
        self._http_client = http_client
        self.model = model
        self.fallback_models = tuple(fallback_models)
        self.timeout_sec = timeout_sec

    @property
    def available(self) -> bool:
        return self._client is not None

    def candidate_models(self) -> list[str]:
        """Return de-duplicated model fallback order for chat completions."""
        out: list[str] = []
        for model in (self.model, *(self.fallback_models or DEFAULT_FALLBACK_MODELS)):
            normalized = (model or "").strip()
            if normalized and normalized not in out:
                out.append(normalized)
        return out

    async def generate(
        self,
        prompt: str,
        image_base64: Optional[str] = None,
        *,
        system_message: str = "Follow the user prompt exactly.",
        max_tokens: int = GUIDANCE_MAX_TOKENS,
        temperature: float = 0.7,
        request_id: str = "-",
        endpoint: str = "-",
    ) -> str:
        if self._client is None:
            raise FailedPrecondition("AI features are not configured on this server.")

        prompt_hash = _sha256_hex({"prompt": prompt, "has_image": bool(image_base64)})
        user_content = _build_user_content(prompt, image_base64)
        candidates = self.candidate_models()
        last_error: Optional[Exception] = None

        for candidate_model in candidates:
            payload = {
                "model": candidate_model,
                "messages": [
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": user_content},
                ],
                "max_tokens": int(max_tokens),
                "temperature": float(temperature),
            }
            try:
                logger.info(
                    "AI call started request_id=%s endpoint=%s selected_model=%s prompt_hash=%s",
                    request_id,
                    endpoint,
                    candidate_model,
                    prompt_hash,
                )
                response = await asyncio.wait_for(
                    self._client.chat.completions.create(**payload),
                    timeout=self.timeout_sec,
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    "AI call timed out request_id=%s endpoint=%s selected_model=%s timeout_sec=%s",
                    request_id,
                    endpoint,
                    candidate_model,
                    self.timeout_sec,
                )
                raise Internal("The AI service took too long to respond.") from e
            except Exception as e:
                last_error = e
                logger.warning(
                    "AI model attempt failed request_id=%s selected_model=%s error_type=%s error=%s",
                    request_id,
                    candidate_model,
                    type(e).__name__,
                    str(e),
                )
                continue

            text = response.choices[0].message.content if response and response.choices else ""
            response_text = text if isinstance(text, str) else ""
            if not response_text.strip():
                last_error = RuntimeError(f"AI returned empty content. Model: {candidate_model}")
                logger.warning(
                    "AI model returned empty content request_id=%s selected_model=%s",
                    request_id,
                    candidate_model,
                )
                continue

            _emit_ai_audit_event(
                request_id=request_id,
                prompt_hash=prompt_hash,
                model_used=f"openai/{candidate_model}",
                endpoint=endpoint,
                response_length=len(response_text),
            )
            return response_text

        raise Internal(
            "The AI service is unavailable right now.",
            details={
                "models": candidates,
                "lastError": type(last_error).__name__ if last_error else "N/A",
            },
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()


def build_generative_client(settings: Settings) -> GenerativeClient:
    """Build the OpenAI-backed client; without an API key the client reports unavailable."""
    if not settings.openai_api_key:
        return GenerativeClient(
            None,
            model=settings.openai_model,
            fallback_models=settings.openai_fallback_models,
            timeout_sec=settings.ai_timeout_sec,
        )

    proxy_url = _first_nonempty_env("OPENAI_PROXY_URL", "HTTPS_PROXY", "https_proxy", "ALL_PROXY", "all_proxy")
    timeout = httpx.Timeout(connect=10.0, read=120.0, write=120.0, pool=120.0)
    if proxy_url:
        http_client = httpx.AsyncClient(timeout=timeout, trust_env=True, proxy=proxy_url)
    else:
        http_client = httpx.AsyncClient(timeout=timeout, trust_env=True)
    client_kwargs: dict[str, Any] = {"api_key": settings.openai_api_key, "http_client": http_client}
    if settings.openai_base_url:
        client_kwargs["base_url"] = settings.openai_base_url
    client = AsyncOpenAI(**client_kwargs)
    logger.info(
        "OpenAI client initialized base_url=%s proxy_configured=%s model=%s",
        str(getattr(client, "base_url", "default")),
        "True" if bool(proxy_url) else "False",
        settings.openai_model,
    )
    return GenerativeClient(
        client,
        model=settings.openai_model,
        fallback_models=settings.openai_fallback_models,
        timeout_sec=settings.ai_timeout_sec,
        http_client=http_client,
    )


def parse_model_json(text: Any) -> dict[str, Any]:
    """Strip markdown fences and decode a JSON object; raise ValueError otherwise."""
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Model returned no content")
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    if not cleaned.startswith("{"):
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Model output does not contain a JSON object")
        cleaned = cleaned[start : end + 1]
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise ValueError("Model output is not a JSON object")
    return parsed


# ------------------------------------------------------------------------------
# Identification
# ------------------------------------------------------------------------------

def normalize_confidence(raw: Any) -> int:
    """Values above 1 are percentages, values in 0..1 are fractions; clamp to 0..100."""
    if isinstance(raw, bool):
        return 0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if value != value:
        return 0
    if value <= 1:
        value *= 100
    return int(round(max(0.0, min(100.0, value))))


def _string_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def _summarize_report(markdown: str) -> str:
    cleaned = re.sub(r"```[\s\S]*?```", "", markdown)
    cleaned = re.sub(r"[*_#]+", "", cleaned)
    cleaned = " ".join(cleaned.split())
    sentences = [s for s in re.split(r"(?<=[.!?])\s+", cleaned) if s]
    return " ".join(sentences[:3])


def _catalog_match(*names: Any) -> CrystalRecord | None:
    for name in names:
        for candidate in _string_list(name):
            record = find_by_name(candidate)
            if record is not None:
                return record
    return None


def normalize_identification(raw: Any) -> dict[str, Any]:
    """Normalize either model response shape into one identification record.

    Two shapes are accepted: ``{"identification": {...}, ...}`` and the
    structured ``{"report": "...", "data": {...}}`` form. Known crystals are
    enriched from the catalog where the model left fields empty.
    """
    if not isinstance(raw, dict):
        raw = {}

    if isinstance(raw.get("data"), dict) or "report" in raw:
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        report = _text(raw.get("report"))
        meta = data.get("metaphysical_properties") if isinstance(data.get("metaphysical_properties"), dict) else {}
        care = data.get("care_recommendations") if isinstance(data.get("care_recommendations"), dict) else {}
        geo = data.get("geological_data") if isinstance(data.get("geological_data"), dict) else {}
        name = _text(data.get("crystal_type")) or "Unknown"
        variety = _text(data.get("variety"))
        scientific_name = _text(data.get("scientific_name"))
        alternative_names = _string_list(data.get("alternative_names"))
        confidence = normalize_confidence(data.get("confidence_percent"))
        description = _summarize_report(report)
        colors = _string_list(data.get("colors"))
        analysis_date = data.get("analysis_date") if isinstance(data.get("analysis_date"), str) else None
    else:
        ident = raw.get("identification") if isinstance(raw.get("identification"), dict) else {}
        meta = raw.get("metaphysical_properties") if isinstance(raw.get("metaphysical_properties"), dict) else {}
        care = raw.get("care_instructions") if isinstance(raw.get("care_instructions"), dict) else {}
        geo = raw.get("physical_properties") if isinstance(raw.get("physical_properties"), dict) else {}
        name = _text(ident.get("name")) or "Unknown"
        variety = _text(ident.get("variety"))
        scientific_name = _text(ident.get("scientific_name"))
        alternative_names = _string_list(ident.get("alternative_names"))
        confidence = normalize_confidence(ident.get("confidence"))
        report = ""
        description = _text(raw.get("description"))
        colors = _string_list(raw.get("colors"))
        analysis_date = None

    elements = _string_list(meta.get("element") or meta.get("elements"))
    result: dict[str, Any] = {
        "identification": {
            "name": name,
            "confidence": confidence,
            "variety": variety,
            "scientific_name": scientific_name,
            "alternative_names": alternative_names,
        },
        "description": description,
        "metaphysical_properties": {
            "healing_properties": _string_list(meta.get("healing_properties")),
            "primary_chakras": _string_list(meta.get("primary_chakras")),
            "zodiac_signs": _string_list(meta.get("zodiac_signs")),
            "element": ", ".join(elements),
            "elements": elements,
        },
        "physical_properties": {
            "mohs_hardness": _text(geo.get("mohs_hardness")),
            "chemical_formula": _text(geo.get("chemical_formula")),
            "crystal_system": _text(geo.get("crystal_system")),
        },
        "care_instructions": {
            "cleansing": _string_list(care.get("cleansing")),
            "charging": _string_list(care.get("charging")),
            "storage": _text(care.get("storage")),
        },
        "report_markdown": report,
        "analysis_date": analysis_date,
        "colors": colors,
        "catalogMatch": None,
    }

    record = _catalog_match(name, variety, alternative_names)
    if record is not None:
        result["catalogMatch"] = record.to_payload()
        ident_out = result["identification"]
        ident_out["scientific_name"] = ident_out["scientific_name"] or record.scientific_name
        meta_out = result["metaphysical_properties"]
        if not meta_out["healing_properties"]:
            meta_out["healing_properties"] = sorted(record.healing_properties)
        if not meta_out["primary_chakras"]:
            meta_out["primary_chakras"] = sorted(record.chakras)
        if not meta_out["zodiac_signs"]:
            meta_out["zodiac_signs"] = sorted(record.zodiac_signs)
        if not meta_out["elements"]:
            meta_out["elements"] = sorted(record.elements)
            meta_out["element"] = ", ".join(meta_out["elements"])
        care_out = result["care_instructions"]
        if not care_out["cleansing"]:
            care_out["cleansing"] = list(record.care_instructions.cleansing)
        if not care_out["charging"]:
            care_out["charging"] = list(record.care_instructions.charging)
        if not care_out["storage"]:
            care_out["storage"] = " ".join(record.care_instructions.storage)
        if not result["description"]:
            result["description"] = record.description
    return result


async def identify_crystal(
    client: GenerativeClient,
    store: DocumentStore,
    user_id: str,
    image_base64: str,
    *,
    request_id: str = "-",
) -> dict[str, Any]:
    if not isinstance(image_base64, str) or not image_base64.strip():
        raise InvalidArgument("Image data is required")
    if not client.available:
        raise FailedPrecondition("Crystal identification is not configured on this server.")

    try:
        text = await client.generate(
            IDENTIFY_PROMPT,
            image_base64,
            system_message=IDENTIFY_SYSTEM_PROMPT,
            max_tokens=IDENTIFY_MAX_TOKENS,
            temperature=0.4,
            request_id=request_id,
            endpoint="/crystals/identify",
        )
        parsed = parse_model_json(text)
    except (GrimoireError, ValueError) as e:
        logger.error(
            "Crystal identification failed request_id=%s user_id=%s error_type=%s error=%s",
            request_id,
            user_id,
            type(e).__name__,
            str(e),
        )
        raise Internal("Identification failed", details={"reason": type(e).__name__}) from e

    result = normalize_identification(parsed)
    record = dict(result)
    record.update({
        "userId": user_id,
        "timestamp": _utc_iso_now(),
        "imageData": image_base64.strip()[:STORED_IMAGE_PREFIX_CHARS] + "...",
    })
    doc_id = await asyncio.to_thread(store.add, f"users/{user_id}/identifications", record)
    result["id"] = doc_id
    logger.info(
        "Crystal identified request_id=%s user_id=%s name=%s confidence=%s catalog_match=%s",
        request_id,
        user_id,
        result["identification"]["name"],
        result["identification"]["confidence"],
        bool(result["catalogMatch"]),
    )
    return result


# ------------------------------------------------------------------------------
# Guidance and dream analysis
# ------------------------------------------------------------------------------

def _candidate_names(entries: Sequence[RecommendationEntry]) -> str:
    return ", ".join(entry.crystal.name for entry in entries) or "none"


def _usage_hint(record: CrystalRecord) -> str:
    if record.care_instructions.usage:
        return record.care_instructions.usage[0]
    return f"Hold {record.name} during a few slow breaths while stating your intention."


def _fallback_guidance(question: str, intent_keys: set[str], entries: Sequence[RecommendationEntry]) -> dict[str, Any]:
    names = [entry.crystal.name for entry in entries]
    focus = ", ".join(sorted(intent_keys))
    lead = names[0] if names else "Clear Quartz"
    return {
        "recommended_crystals": [
            {
                "name": entry.crystal.name,
                "reason": entry.crystal.description or f"Supports {', '.join(sorted(entry.matched_intents)) or focus}.",
                "how_to_use": _usage_hint(entry.crystal),
            }
            for entry in entries
        ],
        "guidance": (
            f"Your question points toward {focus}. Work with {', '.join(names) or lead} "
            "for a few minutes each day and notice how your attention shifts."
        ),
        "affirmation": f"I welcome {focus} into my life with patience and trust.",
        "meditation_tip": f"Hold {lead} at your heart, breathe slowly for five minutes, and return to your question.",
    }


async def get_guidance(
    client: GenerativeClient,
    store: DocumentStore,
    user_id: str,
    question: str,
    *,
    intentions: Sequence[str] = (),
    experience: str | None = None,
    profile: UserProfile | None = None,
    request_id: str = "-",
) -> dict[str, Any]:
    if not isinstance(question, str) or not question.strip():
        raise InvalidArgument("Question is required")
    question = question.strip()
    intent_keys = resolve_intent_keys([*intentions, question])
    entries = recommend(intent_keys, profile, limit=3, need_text=question)

    guidance: dict[str, Any] | None = None
    source = "fallback"
    if client.available:
        prompt = GUIDANCE_PROMPT_TEMPLATE.format(
            question=question,
            experience=experience or "beginner",
            intentions=", ".join(intentions) if intentions else "general wellness",
            candidates=_candidate_names(entries),
        )
        try:
            guidance = parse_model_json(
                await client.generate(
                    prompt,
                    system_message=GUIDANCE_SYSTEM_PROMPT,
                    max_tokens=GUIDANCE_MAX_TOKENS,
                    request_id=request_id,
                    endpoint="/crystals/guidance",
                )
            )
            source = "ai"
        except (GrimoireError, ValueError) as e:
            logger.warning(
                "Guidance falling back to catalog request_id=%s user_id=%s error_type=%s error=%s",
                request_id,
                user_id,
                type(e).__name__,
                str(e),
            )
    if guidance is None:
        guidance = _fallback_guidance(question, intent_keys, entries)

    result = dict(guidance)
    result["source"] = source
    result["intentKeys"] = sorted(intent_keys)
    result["catalogRecommendations"] = [entry.to_payload() for entry in entries]
    await asyncio.to_thread(
        store.add,
        f"users/{user_id}/guidance",
        {
            "question": question,
            "intentions": list(intentions),
            "experience": experience,
            "guidance": result,
            "userId": user_id,
            "timestamp": _utc_iso_now(),
        },
    )
    logger.info(
        "Crystal guidance provided request_id=%s user_id=%s source=%s intents=%s",
        request_id,
        user_id,
        source,
        ",".join(sorted(intent_keys)),
    )
    return result


def _fallback_dream(intent_keys: set[str], entries: Sequence[RecommendationEntry]) -> dict[str, Any]:
    themes = sorted(intent_keys)
    return {
        "analysis": (
            "Your dream carries themes of "
            f"{', '.join(themes)}. Notice which images stayed with you after waking; "
            "they often mirror what is asking for attention in daily life."
        ),
        "themes": themes,
        "crystal_suggestions": [
            {
                "name": entry.crystal.name,
                "reason": entry.crystal.description,
                "usage": f"Place {entry.crystal.name} near your bed tonight.",
            }
            for entry in entries
        ],
        "reflection_prompt": "What feeling from this dream would you like to carry into tomorrow?",
    }


async def analyze_dream(
    client: GenerativeClient,
    store: DocumentStore,
    user_id: str,
    content: str,
    *,
    mood: str | None = None,
    moon_phase: str | None = None,
    profile: UserProfile | None = None,
    request_id: str = "-",
) -> dict[str, Any]:
    if not isinstance(content, str) or not content.strip():
        raise InvalidArgument("Dream content is required")
    content = content.strip()
    phase = normalize_phase(moon_phase)
    intent_keys = resolve_intent_keys([content, mood])
    entries = recommend(intent_keys, profile, limit=3, need_text=content)

    analysis: dict[str, Any] | None = None
    source = "fallback"
    if client.available:
        prompt = DREAM_PROMPT_TEMPLATE.format(
            content=content,
            mood=mood or "unspecified",
            moon_phase=phase or "unknown",
            candidates=_candidate_names(entries),
        )
        try:
            analysis = parse_model_json(
                await client.generate(
                    prompt,
                    system_message=DREAM_SYSTEM_PROMPT,
                    max_tokens=DREAM_MAX_TOKENS,
                    request_id=request_id,
                    endpoint="/dreams/analyze",
                )
            )
            source = "ai"
        except (GrimoireError, ValueError) as e:
            logger.warning(
                "Dream analysis falling back to catalog request_id=%s user_id=%s error_type=%s error=%s",
                request_id,
                user_id,
                type(e).__name__,
                str(e),
            )
    if analysis is None:
        analysis = _fallback_dream(intent_keys, entries)

    result = dict(analysis)
    result["source"] = source
    result["moonPhase"] = phase
    result["catalogRecommendations"] = [entry.to_payload() for entry in entries]
    await asyncio.to_thread(
        store.add,
        f"users/{user_id}/dreams",
        {"content": content, "mood": mood, "moonPhase": phase, "analysis": result, "timestamp": _utc_iso_now()},
    )
    return result
