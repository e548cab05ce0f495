"""Request models parsed at the HTTP boundary.

Handlers only pass validated values on to the engines. Field names accept both
snake_case and the camelCase used by the web client.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator

from grimoire.recommendation_engine import DEFAULT_LIMIT, UserProfile


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _Request(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProfileInput(_Request):
    zodiac_sign: Optional[str] = Field(None, validation_alias=_alias("zodiac_sign", "zodiacSign"))
    focus_chakras: Union[list[str], str, None] = Field(
        None, validation_alias=_alias("focus_chakras", "focusChakras", "focusChakra")
    )
    element: Optional[str] = None
    mood: Optional[str] = None
    owned_crystal_names: list[str] = Field(
        default_factory=list, validation_alias=_alias("owned_crystal_names", "ownedCrystalNames", "ownedCrystals")
    )

    def to_profile(self) -> UserProfile:
        focus = self.focus_chakras
        if isinstance(focus, str):
            focus = [focus]
        return UserProfile(
            zodiac_sign=self.zodiac_sign,
            focus_chakras=[c for c in focus or [] if c],
            element=self.element,
            mood=self.mood,
            owned_crystal_names=[n for n in self.owned_crystal_names if n],
        )


class _ProfileRequest(_Request):
    profile: Optional[ProfileInput] = None

    def user_profile(self) -> UserProfile:
        return self.profile.to_profile() if self.profile is not None else UserProfile()


class RecommendationRequest(_ProfileRequest):
    need: Optional[str] = Field(None, description="Free-text need, e.g. 'help me sleep'")
    intents: list[str] = Field(default_factory=list)
    mood: Optional[str] = None
    chakra: Optional[str] = None
    zodiac_sign: Optional[str] = Field(None, validation_alias=_alias("zodiac_sign", "zodiacSign"))
    limit: int = Field(DEFAULT_LIMIT, ge=1)
    exclude: list[str] = Field(default_factory=list)

    def raw_intent_inputs(self) -> list[Optional[str]]:
        return [*self.intents, self.need, self.mood]

    def user_profile(self) -> UserProfile:
        profile = super().user_profile()
        if self.mood and not profile.mood:
            profile.mood = self.mood
        if self.zodiac_sign and not profile.zodiac_sign:
            profile.zodiac_sign = self.zodiac_sign
        if self.chakra and self.chakra not in profile.focus_chakras:
            profile.focus_chakras = [*profile.focus_chakras, self.chakra]
        return profile


class UsageRecordRequest(_Request):
    action: str = Field(..., validation_alias=_alias("action", "actionKey", "action_key"))
    expected_increment: StrictInt = Field(
        ..., validation_alias=_alias("expected_increment", "expectedIncrement", "increment")
    )


class IdentifyRequest(_Request):
    image_data: str = Field(..., min_length=1, validation_alias=_alias("image_data", "imageData", "image"))


class GuidanceRequest(_ProfileRequest):
    question: str = Field(..., min_length=1)
    intentions: list[str] = Field(default_factory=list)
    experience: Optional[str] = None


class MoonRitualRequest(_ProfileRequest):
    phase: Optional[str] = Field(None, validation_alias=_alias("phase", "moonPhase", "moon_phase"))
    intention: Optional[str] = None
    limit: int = Field(3, ge=1, le=10)


class HealingLayoutRequest(_ProfileRequest):
    chakras: list[str] = Field(default_factory=list)
    available_crystals: list[str] = Field(
        default_factory=list,
        validation_alias=_alias("available_crystals", "availableCrystals", "available_crystal_names"),
    )


class DreamRequest(_ProfileRequest):
    content: str = Field(..., min_length=1, validation_alias=_alias("content", "dreamContent", "dream"))
    mood: Optional[str] = None
    moon_phase: Optional[str] = Field(None, validation_alias=_alias("moon_phase", "moonPhase"))


class EarnRequest(_Request):
    action: str


class SpendRequest(_Request):
    amount: StrictInt
    reason: Optional[str] = None


class PaymentIntentRequest(_Request):
    amount: Optional[StrictInt] = None
    currency: Optional[str] = None
    pack_id: Optional[str] = Field(None, validation_alias=_alias("pack_id", "packId"))
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_amount_or_pack(self) -> "PaymentIntentRequest":
        if self.amount is None and not self.pack_id:
            raise ValueError("Either amount or packId is required.")
        return self


class CheckoutRequest(_Request):
    tier: str
    email: Optional[str] = None
    success_url: Optional[str] = Field(None, validation_alias=_alias("success_url", "successUrl"))
    cancel_url: Optional[str] = Field(None, validation_alias=_alias("cancel_url", "cancelUrl"))


class CheckoutConfirmRequest(_Request):
    session_id: str = Field(..., min_length=1, validation_alias=_alias("session_id", "sessionId"))


class CreditPurchaseConfirmRequest(_Request):
    payment_intent_id: str = Field(
        ..., min_length=1, validation_alias=_alias("payment_intent_id", "paymentIntentId")
    )


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    def updates(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class CollectionRequest(_Request):
    name: str = Field(..., min_length=1, validation_alias=_alias("name", "crystalName"))
    notes: Optional[str] = None


class JournalRequest(_Request):
    content: str = Field(..., min_length=1)
    mood: Optional[str] = None
    crystals: list[str] = Field(default_factory=list)


class SupportTicketRequest(_Request):
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    priority: Optional[str] = None
    category: Optional[str] = None


class SupportCommentRequest(_Request):
    message: str = Field(..., min_length=1)


class SupportStatusRequest(_Request):
    status: str

    @field_validator("status")
    @classmethod
    def strip_status(cls, value: str) -> str:
        return value.strip().lower()
