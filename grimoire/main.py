#!/usr/bin/env python3
"""Crystal Grimoire backend (FastAPI).

- Crystal catalog, intent resolution and recommendation scoring
- Plan entitlements and daily usage caps
- Moon rituals, healing layouts and the daily crystal
- AI identification / guidance / dream analysis: OpenAI
- Payments: Stripe
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from grimoire import ai_service, economy, support, user_service
from grimoire.catalog import find_by_name
from grimoire.config import Settings, load_settings
from grimoire.document_store import DocumentStore, build_document_store
from grimoire.errors import FailedPrecondition, GrimoireError, Internal, InvalidArgument, NotFound, Unauthenticated
from grimoire.intent_resolver import resolve_intent_keys
from grimoire.monitoring import with_monitoring
from grimoire.payments import PaymentService
from grimoire.plan_catalog import (
    PlanDetails,
    build_plan_status_response,
    list_plan_catalog,
    plan_document_path,
    resolve_plan_details,
)
from grimoire.recommendation_engine import UserProfile, recommend
from grimoire.ritual_engine import build_moon_ritual, calculate_moon_phase, get_daily_crystal, get_healing_layout
from grimoire.schemas import (
    CheckoutConfirmRequest,
    CheckoutRequest,
    CollectionRequest,
    CreditPurchaseConfirmRequest,
    DreamRequest,
    EarnRequest,
    GuidanceRequest,
    HealingLayoutRequest,
    IdentifyRequest,
    JournalRequest,
    MoonRitualRequest,
    PaymentIntentRequest,
    ProfileUpdateRequest,
    RecommendationRequest,
    SpendRequest,
    SupportCommentRequest,
    SupportStatusRequest,
    SupportTicketRequest,
    UsageRecordRequest,
)
from grimoire.usage_ledger import ACTION_INCREMENTS, UsageLedger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s - %(message)s",
)

logger = logging.getLogger("crystal_grimoire")


def configure_app(
    target: FastAPI,
    *,
    settings: Settings,
    store: Optional[DocumentStore] = None,
    ai: Optional[ai_service.GenerativeClient] = None,
    payments: Optional[PaymentService] = None,
) -> FastAPI:
    """Attach the collaborators every handler reads from ``app.state``."""
    target.state.settings = settings
    target.state.store = store if store is not None else build_document_store(
        settings.document_store, project_id=settings.firebase_project_id
    )
    target.state.ledger = UsageLedger(target.state.store)
    target.state.ai = ai if ai is not None else ai_service.build_generative_client(settings)
    target.state.payments = payments if payments is not None else PaymentService(settings)
    logger.info("Application configured %s", settings.describe())
    return target


@asynccontextmanager
async def lifespan(target: FastAPI):
    yield
    ai = getattr(target.state, "ai", None)
    if ai is not None:
        await ai.aclose()


app = FastAPI(title="Crystal Grimoire Backend", lifespan=lifespan)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

configure_app(app, settings=load_settings(logger))


# ------------------------------------------------------------------------------
# Error handling
# ------------------------------------------------------------------------------
@app.exception_handler(GrimoireError)
async def grimoire_error_handler(request: Request, exc: GrimoireError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "Request failed path=%s status=%s code=%s message=%s",
        request.url.path,
        exc.http_status,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_payload()})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    error = InvalidArgument("Invalid request", details={"errors": errors})
    return JSONResponse(status_code=error.http_status, content={"detail": error.to_payload()})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error path=%s error_type=%s", request.url.path, type(exc).__name__)
    error = Internal("Something went wrong. Please try again.")
    return JSONResponse(status_code=error.http_status, content={"detail": error.to_payload()})


# ------------------------------------------------------------------------------
# Request helpers
# ------------------------------------------------------------------------------
def _resolve_request_id(request: Optional[Request]) -> str:
    if request is not None:
        for header in ("x-request-id", "x-correlation-id"):
            value = (request.headers.get(header) or "").strip()
            if value:
                return value
    return str(uuid4())


def _require_user(user_id: Optional[str]) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise Unauthenticated("Must be authenticated")
    return user_id.strip()


def _claims_from_roles(raw_roles: Optional[str]) -> dict[str, Any]:
    roles = [r.strip().lower() for r in (raw_roles or "").split(",") if r.strip()]
    return {"roles": roles}


def _store(request: Request) -> DocumentStore:
    return request.app.state.store


def _load_plan(store: DocumentStore, user_id: str) -> PlanDetails:
    doc = store.get(plan_document_path(user_id)) or {}
    return resolve_plan_details(doc.get("plan") or doc.get("billingTier"))


def _consume_usage(request: Request, user_id: str, action: str) -> dict[str, Any]:
    plan = _load_plan(_store(request), user_id)
    increment = request.app.state.ledger.record_action(user_id, action, ACTION_INCREMENTS[action], plan=plan)
    return increment.to_payload()


def _with_owned_crystals(store: DocumentStore, user_id: str, profile: UserProfile) -> UserProfile:
    if not profile.owned_crystal_names:
        profile.owned_crystal_names = user_service.list_owned_crystal_names(store, user_id)
    return profile


# ------------------------------------------------------------------------------
# API endpoints: Health / plans / usage
# ------------------------------------------------------------------------------
@app.get("/health")
def health(request: Request):
    settings: Settings = request.app.state.settings
    return {
        "status": "ok",
        **settings.describe(),
        "ai_available": request.app.state.ai.available,
    }


@app.get("/plans")
def plans():
    return {"plans": list_plan_catalog()}


@app.get("/plan/status")
@with_monitoring("getPlanStatus")
def plan_status(request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    plan = _load_plan(_store(request), uid)
    snapshot = request.app.state.ledger.get_snapshot(uid)
    return build_plan_status_response(plan, snapshot)


@app.post("/usage/record")
@with_monitoring("recordUsage")
def record_usage(body: UsageRecordRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    plan = _load_plan(_store(request), uid)
    increment = request.app.state.ledger.record_action(uid, body.action, body.expected_increment, plan=plan)
    return increment.to_payload()


# ------------------------------------------------------------------------------
# API endpoints: Crystals
# ------------------------------------------------------------------------------
@app.post("/crystals/identify")
@with_monitoring("identifyCrystal")
async def identify(body: IdentifyRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    ai: ai_service.GenerativeClient = request.app.state.ai
    if not ai.available:
        raise FailedPrecondition("Crystal identification is not configured on this server.")
    usage = await asyncio.to_thread(_consume_usage, request, uid, "crystal_identification")
    result = await ai_service.identify_crystal(
        ai,
        _store(request),
        uid,
        body.image_data,
        request_id=_resolve_request_id(request),
    )
    result["usage"] = usage
    return result


@app.post("/crystals/guidance")
@with_monitoring("getCrystalGuidance")
async def guidance(body: GuidanceRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    usage = await asyncio.to_thread(_consume_usage, request, uid, "crystal_guidance")
    result = await ai_service.get_guidance(
        request.app.state.ai,
        _store(request),
        uid,
        body.question,
        intentions=body.intentions,
        experience=body.experience,
        profile=await asyncio.to_thread(_with_owned_crystals, _store(request), uid, body.user_profile()),
        request_id=_resolve_request_id(request),
    )
    result["usage"] = usage
    return result


@app.post("/crystals/recommendations")
@with_monitoring("getCrystalRecommendations")
def recommendations(body: RecommendationRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    usage = _consume_usage(request, uid, "crystal_recommendations")
    settings: Settings = request.app.state.settings
    intent_keys = resolve_intent_keys(body.raw_intent_inputs())
    profile = _with_owned_crystals(_store(request), uid, body.user_profile())
    entries = recommend(
        intent_keys,
        profile,
        limit=body.limit,
        exclude=body.exclude,
        need_text=body.need,
        max_limit=settings.recommendation_max_limit,
    )
    return {
        "intentKeys": sorted(intent_keys),
        "recommendations": [entry.to_payload() for entry in entries],
        "usage": usage,
    }


@app.get("/crystals/daily")
def daily_crystal(
    date: Optional[str] = Query(None, description="UTC calendar date (YYYY-MM-DD)"),
    intent: Optional[str] = Query(None),
    chakra: Optional[str] = Query(None),
    mood: Optional[str] = Query(None),
):
    return get_daily_crystal(date, intent=intent, chakra=chakra, mood=mood)


@app.get("/crystals/{name}")
def crystal_by_name(name: str):
    record = find_by_name(name)
    if record is None:
        raise NotFound(f"Unknown crystal: {name}")
    return record.to_payload()


# ------------------------------------------------------------------------------
# API endpoints: Moon / rituals / layouts / dreams
# ------------------------------------------------------------------------------
@app.get("/moon/current")
def moon_current():
    return calculate_moon_phase()


@app.post("/rituals/moon")
@with_monitoring("getMoonRituals")
def moon_ritual(body: MoonRitualRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    phase = body.phase or calculate_moon_phase()["phase"]
    # Validate the phase before spending a daily use.
    ritual = build_moon_ritual(
        phase,
        _with_owned_crystals(_store(request), uid, body.user_profile()),
        intention=body.intention,
        limit=body.limit,
    )
    ritual["usage"] = _consume_usage(request, uid, "moon_ritual")
    return ritual


@app.post("/layouts/healing")
@with_monitoring("generateHealingLayout")
def healing_layout(body: HealingLayoutRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    usage = _consume_usage(request, uid, "healing_layout")
    available = body.available_crystals or user_service.list_owned_crystal_names(_store(request), uid)
    steps = get_healing_layout(body.chakras, available, body.user_profile())
    return {"layout": [step.to_payload() for step in steps], "usage": usage}


@app.post("/dreams/analyze")
@with_monitoring("analyzeDream")
async def dream_analysis(body: DreamRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    usage = await asyncio.to_thread(_consume_usage, request, uid, "dream_analysis")
    result = await ai_service.analyze_dream(
        request.app.state.ai,
        _store(request),
        uid,
        body.content,
        mood=body.mood,
        moon_phase=body.moon_phase,
        profile=body.user_profile(),
        request_id=_resolve_request_id(request),
    )
    result["usage"] = usage
    return result


# ------------------------------------------------------------------------------
# API endpoints: Seer Credits
# ------------------------------------------------------------------------------
@app.post("/economy/earn")
@with_monitoring("earnSeerCredits")
def economy_earn(body: EarnRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    return economy.earn_credits(_store(request), _require_user(x_user_id), body.action)


@app.post("/economy/spend")
@with_monitoring("spendSeerCredits")
def economy_spend(body: SpendRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    return economy.spend_credits(_store(request), _require_user(x_user_id), body.amount, reason=body.reason)


@app.get("/economy/balance")
def economy_balance(request: Request, x_user_id: Optional[str] = Header(None)):
    return economy.get_balance(_store(request), _require_user(x_user_id))


# ------------------------------------------------------------------------------
# API endpoints: Payments
# ------------------------------------------------------------------------------
@app.post("/payments/intent")
@with_monitoring("createPaymentIntent")
def payment_intent(body: PaymentIntentRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    payments: PaymentService = request.app.state.payments
    metadata = {str(k): v for k, v in body.metadata.items()}
    metadata["userId"] = uid
    amount: Any = body.amount
    if body.pack_id:
        pack = economy.resolve_credit_pack(body.pack_id)
        amount = pack["amountCents"]
        metadata.update({"packId": pack["packId"], "credits": pack["credits"], "purchaseType": "credits"})
    return payments.create_intent(amount, body.currency, metadata)


@app.post("/payments/checkout")
@with_monitoring("createCheckoutSession")
def payment_checkout(body: CheckoutRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    payments: PaymentService = request.app.state.payments
    return payments.create_checkout_session(
        body.tier,
        uid,
        email=body.email,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )


@app.post("/payments/confirm")
@with_monitoring("finalizeStripeCheckoutSession")
def payment_confirm(body: CheckoutConfirmRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    payments: PaymentService = request.app.state.payments
    return payments.confirm_checkout(body.session_id, uid, _store(request))


@app.post("/payments/credits/confirm")
@with_monitoring("confirmCreditPurchase")
def payment_credits_confirm(
    body: CreditPurchaseConfirmRequest,
    request: Request,
    x_user_id: Optional[str] = Header(None),
):
    uid = _require_user(x_user_id)
    payments: PaymentService = request.app.state.payments
    intent = payments.retrieve_intent(body.payment_intent_id)
    intent_data = dict(intent)
    metadata = dict(intent_data.get("metadata") or {})
    if metadata.get("userId") != uid:
        raise InvalidArgument("Payment belongs to a different account")
    if intent_data.get("status") != "succeeded":
        raise FailedPrecondition("Payment has not completed yet", details={"status": intent_data.get("status")})
    try:
        credits = int(metadata.get("credits"))
    except (TypeError, ValueError) as e:
        raise InvalidArgument("Payment is not a credit pack purchase") from e
    return economy.grant_purchased_credits(_store(request), uid, body.payment_intent_id, credits)


# ------------------------------------------------------------------------------
# API endpoints: Profile / collection / journal / account
# ------------------------------------------------------------------------------
@app.get("/profile")
def get_profile(request: Request, x_user_id: Optional[str] = Header(None)):
    return user_service.get_user_profile(_store(request), _require_user(x_user_id))


@app.post("/profile")
@with_monitoring("updateUserProfile")
def update_profile(body: ProfileUpdateRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    store = _store(request)
    if store.get(user_service.user_document_path(uid)) is None:
        user_service.initialize_user_document(store, uid)
    return user_service.update_user_profile(store, uid, body.updates())


@app.post("/collection")
@with_monitoring("addToCollection")
def add_collection_entry(body: CollectionRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    store = _store(request)
    return user_service.add_to_collection(store, uid, _load_plan(store, uid), body.name, notes=body.notes)


@app.post("/journal")
@with_monitoring("addJournalEntry")
def add_journal(body: JournalRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    uid = _require_user(x_user_id)
    store = _store(request)
    return user_service.add_journal_entry(
        store,
        uid,
        _load_plan(store, uid),
        body.content,
        mood=body.mood,
        crystals=body.crystals,
    )


@app.delete("/account")
@with_monitoring("deleteUserAccount")
def delete_account(request: Request, x_user_id: Optional[str] = Header(None)):
    return user_service.delete_user_account(_store(request), _require_user(x_user_id))


# ------------------------------------------------------------------------------
# API endpoints: Support
# ------------------------------------------------------------------------------
@app.post("/support/tickets")
@with_monitoring("createSupportTicket")
def create_ticket(body: SupportTicketRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    return support.create_support_ticket(
        _store(request),
        _require_user(x_user_id),
        body.subject,
        body.message,
        priority=body.priority,
        category=body.category,
    )


@app.post("/support/tickets/{ticket_id}/comments")
@with_monitoring("addSupportComment")
def comment_ticket(
    ticket_id: str,
    body: SupportCommentRequest,
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
):
    return support.add_ticket_comment(
        _store(request),
        ticket_id,
        _require_user(x_user_id),
        body.message,
        claims=_claims_from_roles(x_user_roles),
    )


@app.patch("/support/tickets/{ticket_id}")
@with_monitoring("updateSupportTicketStatus")
def update_ticket(
    ticket_id: str,
    body: SupportStatusRequest,
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
):
    return support.update_ticket_status(
        _store(request),
        ticket_id,
        _require_user(x_user_id),
        body.status,
        claims=_claims_from_roles(x_user_roles),
    )
