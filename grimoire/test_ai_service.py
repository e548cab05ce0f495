"""Tests for model output parsing, model fallback and the AI feature flows."""

from __future__ import annotations

import asyncio
import json
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from grimoire import ai_service
from grimoire.ai_service import (
    GenerativeClient,
    analyze_dream,
    get_guidance,
    identify_crystal,
    normalize_confidence,
    normalize_identification,
    parse_model_json,
)
from grimoire.document_store import InMemoryDocumentStore
from grimoire.errors import FailedPrecondition, Internal, InvalidArgument


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _client(create: AsyncMock, **kwargs) -> GenerativeClient:
    transport = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return GenerativeClient(transport, model=kwargs.pop("model", "gpt-4o-mini"), **kwargs)


_IDENTIFY_RESPONSE = {
    "report": "# Amethyst\n\nA **violet** quartz. It calms the mind. It aids sleep. It is common.",
    "data": {
        "crystal_type": "Amethyst",
        "confidence_percent": 0.92,
        "colors": ["purple"],
        "metaphysical_properties": {"healing_properties": ["calm"]},
    },
}


class TestParseModelJson(unittest.TestCase):
    def test_fenced_json(self) -> None:
        self.assertEqual(parse_model_json('```json\n{"a": 1}\n```'), {"a": 1})

    def test_json_embedded_in_prose(self) -> None:
        self.assertEqual(parse_model_json('Sure! Here it is: {"a": {"b": 2}} Enjoy.'), {"a": {"b": 2}})

    def test_rejects_non_objects(self) -> None:
        for bad in ("", None, "no json here", "[1, 2]", "{broken"):
            with self.assertRaises(ValueError, msg=repr(bad)):
                parse_model_json(bad)


class TestNormalizeConfidence(unittest.TestCase):
    def test_fraction_and_percent(self) -> None:
        self.assertEqual(normalize_confidence(0.92), 92)
        self.assertEqual(normalize_confidence("87"), 87)
        self.assertEqual(normalize_confidence(1), 100)

    def test_out_of_range_and_garbage(self) -> None:
        self.assertEqual(normalize_confidence(250), 100)
        self.assertEqual(normalize_confidence(-3), 0)
        self.assertEqual(normalize_confidence(True), 0)
        self.assertEqual(normalize_confidence(float("nan")), 0)
        self.assertEqual(normalize_confidence("high"), 0)


class TestNormalizeIdentification(unittest.TestCase):
    def test_structured_shape_enriched_from_catalog(self) -> None:
        result = normalize_identification(_IDENTIFY_RESPONSE)
        self.assertEqual(result["identification"]["name"], "Amethyst")
        self.assertEqual(result["identification"]["confidence"], 92)
        self.assertEqual(result["catalogMatch"]["id"], "amethyst")
        self.assertEqual(result["metaphysical_properties"]["healing_properties"], ["calm"])
        self.assertIn("crown", result["metaphysical_properties"]["primary_chakras"])
        self.assertEqual(result["description"], "Amethyst A violet quartz. It calms the mind. It aids sleep.")

    def test_legacy_shape_matches_alias(self) -> None:
        raw = {
            "identification": {"name": "Mystery Rock", "alternative_names": ["Love Stone"], "confidence": 55},
            "description": "Pink and soft.",
        }
        result = normalize_identification(raw)
        self.assertEqual(result["catalogMatch"]["id"], "rose-quartz")
        self.assertEqual(result["identification"]["confidence"], 55)
        self.assertEqual(result["description"], "Pink and soft.")

    def test_unknown_crystal_has_no_match(self) -> None:
        result = normalize_identification({"identification": {}})
        self.assertEqual(result["identification"]["name"], "Unknown")
        self.assertIsNone(result["catalogMatch"])
        self.assertEqual(normalize_identification("garbage")["identification"]["confidence"], 0)


class TestGenerativeClient(unittest.TestCase):
    def test_candidate_models_deduplicated(self) -> None:
        client = GenerativeClient(object(), model="gpt-4o", fallback_models=("gpt-4o", " ", "gpt-4o-mini"))
        self.assertEqual(client.candidate_models(), ["gpt-4o", "gpt-4o-mini"])
        self.assertEqual(GenerativeClient(None, model="").candidate_models(), ["gpt-4o-mini", "gpt-4o"])

    def test_falls_back_to_next_model(self) -> None:
        create = AsyncMock(side_effect=[RuntimeError("overloaded"), _completion(""), _completion('{"ok": true}')])
        client = _client(create, fallback_models=("a", "b"))
        with patch.object(ai_service.ai_audit_logger, "info") as audit:
            text = asyncio.run(client.generate("private dream text", request_id="req-1", endpoint="/x"))
        self.assertEqual(text, '{"ok": true}')
        self.assertEqual([c.kwargs["model"] for c in create.call_args_list], ["gpt-4o-mini", "a", "b"])
        event = json.loads(audit.call_args.args[0])
        self.assertEqual(event["model_used"], "openai/b")
        self.assertEqual(event["request_id"], "req-1")
        self.assertNotIn("private dream text", audit.call_args.args[0])

    def test_all_models_fail(self) -> None:
        client = _client(AsyncMock(side_effect=RuntimeError("down")), fallback_models=("a",))
        with self.assertRaises(Internal) as ctx:
            asyncio.run(client.generate("hi"))
        self.assertEqual(ctx.exception.details["lastError"], "RuntimeError")

    def test_timeout_is_not_retried(self) -> None:
        create = AsyncMock(side_effect=asyncio.TimeoutError())
        client = _client(create, fallback_models=("a",))
        with self.assertRaises(Internal):
            asyncio.run(client.generate("hi"))
        self.assertEqual(create.await_count, 1)

    def test_image_sent_as_data_uri(self) -> None:
        create = AsyncMock(return_value=_completion("{}"))
        asyncio.run(_client(create).generate("look", "QUJD"))
        content = create.call_args.kwargs["messages"][1]["content"]
        self.assertEqual(content[1]["image_url"]["url"], "data:image/jpeg;base64,QUJD")

    def test_unconfigured_client(self) -> None:
        with self.assertRaises(FailedPrecondition):
            asyncio.run(GenerativeClient(None, model="m").generate("hi"))


class TestIdentifyCrystal(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()

    def test_stores_identification_with_truncated_image(self) -> None:
        client = _client(AsyncMock(return_value=_completion(json.dumps(_IDENTIFY_RESPONSE))))
        image = "A" * 500
        result = asyncio.run(identify_crystal(client, self.store, "u1", image))
        stored = self.store.query("users/u1/identifications")
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].id, result["id"])
        self.assertEqual(stored[0].data["imageData"], "A" * 100 + "...")
        self.assertEqual(stored[0].data["userId"], "u1")

    def test_unparseable_output_fails(self) -> None:
        client = _client(AsyncMock(return_value=_completion("I think it is a rock.")))
        with self.assertRaises(Internal) as ctx:
            asyncio.run(identify_crystal(client, self.store, "u1", "QUJD"))
        self.assertEqual(ctx.exception.message, "Identification failed")
        self.assertEqual(self.store.query("users/u1/identifications"), [])

    def test_requires_image_and_client(self) -> None:
        with self.assertRaises(InvalidArgument):
            asyncio.run(identify_crystal(GenerativeClient(None, model="m"), self.store, "u1", "  "))
        with self.assertRaises(FailedPrecondition):
            asyncio.run(identify_crystal(GenerativeClient(None, model="m"), self.store, "u1", "QUJD"))


class TestGuidanceAndDreams(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()

    def test_guidance_falls_back_without_client(self) -> None:
        result = asyncio.run(
            get_guidance(GenerativeClient(None, model="m"), self.store, "u1", "I can't sleep and feel stressed")
        )
        self.assertEqual(result["source"], "fallback")
        self.assertEqual(result["intentKeys"], ["anxiety", "sleep"])
        self.assertEqual(result["recommended_crystals"][0]["name"], "Amethyst")
        self.assertEqual(len(result["catalogRecommendations"]), 3)
        self.assertEqual(len(self.store.query("users/u1/guidance")), 1)

    def test_guidance_uses_model_json(self) -> None:
        create = AsyncMock(return_value=_completion('{"guidance": "Breathe.", "affirmation": "I am calm."}'))
        result = asyncio.run(get_guidance(_client(create), self.store, "u1", "help me focus"))
        self.assertEqual(result["source"], "ai")
        self.assertEqual(result["guidance"], "Breathe.")
        self.assertIn("Carnelian", create.call_args.kwargs["messages"][1]["content"])

    def test_guidance_falls_back_on_garbage(self) -> None:
        client = _client(AsyncMock(return_value=_completion("not json")))
        result = asyncio.run(get_guidance(client, self.store, "u1", "help me focus"))
        self.assertEqual(result["source"], "fallback")

    def test_guidance_requires_question(self) -> None:
        with self.assertRaises(InvalidArgument):
            asyncio.run(get_guidance(GenerativeClient(None, model="m"), self.store, "u1", "   "))

    def test_dream_fallback_records_phase(self) -> None:
        result = asyncio.run(
            analyze_dream(
                GenerativeClient(None, model="m"),
                self.store,
                "u1",
                "I was flying over the ocean",
                mood="worried",
                moon_phase="Full Moon",
            )
        )
        self.assertEqual(result["source"], "fallback")
        self.assertEqual(result["moonPhase"], "full_moon")
        self.assertIn("anxiety", result["themes"])
        self.assertEqual(len(self.store.query("users/u1/dreams")), 1)


if __name__ == "__main__":
    unittest.main()
