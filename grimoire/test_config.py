"""Tests for environment-driven settings."""

from __future__ import annotations

import os
import unittest
from unittest.mock import Mock, patch

from grimoire import config

_CLEARED = {
    key: ""
    for key in (
        "OPENAI_API_KEY",
        "OPENAI_MODEL",
        "OPENAI_FALLBACK_MODELS",
        "OPENAI_BASE_URL",
        "OPENAI_API_BASE",
        "AI_TIMEOUT_SEC",
        "STRIPE_SECRET_KEY",
        "STRIPE_PRICE_PREMIUM",
        "STRIPE_PRICE_EMISSARY",
        "STRIPE_PRICE_PRO",
        "STRIPE_PRICE_ASCENDED",
        "STRIPE_PRICE_FOUNDERS",
        "STRIPE_PRICE_ESPER",
        "APP_BASE_URL",
        "DOCUMENT_STORE",
        "RECOMMENDATION_MAX_LIMIT",
        "DEFAULT_CURRENCY",
        "ALLOW_LOCAL_OPENAI_BASE_URL",
    )
}


class TestLoadSettings(unittest.TestCase):
    def _load(self, env: dict[str, str]) -> tuple[config.Settings, Mock]:
        fake_logger = Mock()
        with (
            patch.dict(os.environ, {**_CLEARED, **env}, clear=False),
            patch.object(config, "load_env_files"),
        ):
            return config.load_settings(fake_logger), fake_logger

    def test_defaults_warn_about_missing_keys(self) -> None:
        settings, fake_logger = self._load({})
        self.assertFalse(settings.ai_configured)
        self.assertFalse(settings.payments_configured)
        self.assertEqual(settings.document_store, "memory")
        self.assertEqual(settings.recommendation_max_limit, 25)
        self.assertEqual(fake_logger.warning.call_count, 2)

    def test_values_and_aliases(self) -> None:
        settings, _ = self._load({
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_FALLBACK_MODELS": "gpt-4o, ,gpt-4.1-mini",
            "STRIPE_SECRET_KEY": "sk_test",
            "STRIPE_PRICE_EMISSARY": "price_e",
            "APP_BASE_URL": "https://grimoire.example/",
            "DOCUMENT_STORE": "Firestore",
        })
        self.assertEqual(settings.openai_fallback_models, ("gpt-4o", "gpt-4.1-mini"))
        self.assertEqual(settings.price_id_for("premium"), "price_e")
        self.assertIsNone(settings.price_id_for("pro"))
        self.assertEqual(settings.app_base_url, "https://grimoire.example")
        self.assertEqual(settings.document_store, "firestore")
        self.assertEqual(settings.describe()["stripe_prices"], ["premium"])

    def test_invalid_numbers_fall_back(self) -> None:
        settings, fake_logger = self._load({"AI_TIMEOUT_SEC": "soon", "RECOMMENDATION_MAX_LIMIT": "0"})
        self.assertEqual(settings.ai_timeout_sec, 45.0)
        self.assertEqual(settings.recommendation_max_limit, 1)
        self.assertTrue(any("AI_TIMEOUT_SEC" in str(c) for c in fake_logger.warning.call_args_list))

    def test_local_base_url_rejected_unless_allowed(self) -> None:
        settings, fake_logger = self._load({"OPENAI_BASE_URL": "http://localhost:8000/v1"})
        self.assertIsNone(settings.openai_base_url)
        fake_logger.error.assert_called_once()
        allowed, _ = self._load({"OPENAI_BASE_URL": "http://localhost:8000/v1", "ALLOW_LOCAL_OPENAI_BASE_URL": "1"})
        self.assertEqual(allowed.openai_base_url, "http://localhost:8000/v1")


if __name__ == "__main__":
    unittest.main()
