"""Runtime settings loaded once at process start and injected where needed."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

MODULE_DIR = Path(__file__).resolve().parent
REPO_ROOT = MODULE_DIR.parent


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _first_nonempty_env(*keys: str) -> Optional[str]:
    for key in keys:
        value = os.getenv(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _env_float(key: str, default: float, log: logging.Logger, *, minimum: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        log.warning("Invalid %s=%r; using default %s", key, raw, default)
        return default


def _env_int(key: str, default: int, log: logging.Logger, *, minimum: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        log.warning("Invalid %s=%r; using default %s", key, raw, default)
        return default


def load_env_files() -> None:
    """Load grimoire/.env then repo/.env; values already in the process env win."""
    for path in (MODULE_DIR / ".env", REPO_ROOT / ".env"):
        if path.is_file():
            load_dotenv(dotenv_path=path, override=False)


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_fallback_models: tuple[str, ...] = ()
    openai_base_url: Optional[str] = None
    ai_timeout_sec: float = 45.0
    stripe_secret_key: str = ""
    stripe_price_ids: Mapping[str, str] = field(default_factory=dict)
    app_base_url: str = "http://localhost:5173"
    document_store: str = "memory"
    firebase_project_id: Optional[str] = None
    recommendation_max_limit: int = 25
    default_currency: str = "usd"

    @property
    def ai_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def payments_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    def price_id_for(self, tier: str) -> Optional[str]:
        return self.stripe_price_ids.get(tier) or None

    def describe(self) -> dict[str, Any]:
        """Non-secret view for health checks."""
        return {
            "openai_configured": self.ai_configured,
            "model": self.openai_model,
            "stripe_configured": self.payments_configured,
            "stripe_prices": sorted(k for k, v in self.stripe_price_ids.items() if v),
            "document_store": self.document_store,
        }


def _resolve_base_url(log: logging.Logger) -> Optional[str]:
    configured = _first_nonempty_env("OPENAI_BASE_URL", "OPENAI_API_BASE")
    if not configured:
        return None
    lowered = configured.lower()
    if ("localhost" in lowered or "127.0.0.1" in lowered) and not _is_truthy(os.getenv("ALLOW_LOCAL_OPENAI_BASE_URL", "0")):
        log.error("Invalid OPENAI base URL '%s' detected; falling back to default OpenAI endpoint", configured)
        return None
    return configured


def load_settings(logger: logging.Logger | None = None) -> Settings:
    """Build Settings from the environment (after loading .env files)."""
    log = logger or logging.getLogger("crystal_grimoire")
    load_env_files()

    fallback_raw = os.getenv("OPENAI_FALLBACK_MODELS", "")
    fallback_models = tuple(m.strip() for m in fallback_raw.split(",") if m.strip())
    price_ids = {
        tier: value
        for tier, value in (
            ("premium", _first_nonempty_env("STRIPE_PRICE_PREMIUM", "STRIPE_PRICE_EMISSARY")),
            ("pro", _first_nonempty_env("STRIPE_PRICE_PRO", "STRIPE_PRICE_ASCENDED")),
            ("founders", _first_nonempty_env("STRIPE_PRICE_FOUNDERS", "STRIPE_PRICE_ESPER")),
        )
        if value
    }

    settings = Settings(
        openai_api_key=_first_nonempty_env("OPENAI_API_KEY") or "",
        openai_model=_first_nonempty_env("OPENAI_MODEL") or "gpt-4o-mini",
        openai_fallback_models=fallback_models,
        openai_base_url=_resolve_base_url(log),
        ai_timeout_sec=_env_float("AI_TIMEOUT_SEC", 45.0, log, minimum=1.0),
        stripe_secret_key=_first_nonempty_env("STRIPE_SECRET_KEY") or "",
        stripe_price_ids=price_ids,
        app_base_url=(_first_nonempty_env("APP_BASE_URL") or "http://localhost:5173").rstrip("/"),
        document_store=(_first_nonempty_env("DOCUMENT_STORE") or "memory").lower(),
        firebase_project_id=_first_nonempty_env("FIREBASE_PROJECT_ID", "GCLOUD_PROJECT"),
        recommendation_max_limit=_env_int("RECOMMENDATION_MAX_LIMIT", 25, log, minimum=1),
        default_currency=(_first_nonempty_env("DEFAULT_CURRENCY") or "usd").lower(),
    )
    if not settings.ai_configured:
        log.warning("OPENAI_API_KEY is not set. AI features will report as unavailable.")
    if not settings.payments_configured:
        log.warning("STRIPE_SECRET_KEY is not set. Payment endpoints will report as unavailable.")
    return settings
