"""Support tickets: status rules plus the small store-backed ticket workflow."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping

from grimoire.document_store import DocumentStore, Transaction
from grimoire.errors import FailedPrecondition, InvalidArgument, NotFound, Unauthenticated
from grimoire.usage_ledger import utc_now_iso

logger = logging.getLogger("crystal_grimoire")

SUPPORT_COLLECTION = "supportTickets"
DEFAULT_PRIORITY = "medium"
ALLOWED_PRIORITIES = frozenset({"low", "medium", "high"})
ALLOWED_STATUSES = frozenset({"open", "pending_support", "pending_user", "resolved", "closed"})

SUPPORT_TRANSITIONS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "open": ("pending_support", "pending_user", "resolved", "closed"),
    "pending_support": ("pending_user", "resolved", "closed"),
    "pending_user": ("pending_support", "resolved", "closed"),
    "resolved": ("pending_support", "pending_user", "closed"),
    "closed": ("pending_support",),
})

CUSTOMER_TRANSITIONS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "open": ("pending_support", "closed"),
    "pending_support": ("closed",),
    "pending_user": ("pending_support", "closed"),
    "resolved": ("pending_support", "closed"),
    "closed": (),
})

_AGENT_ROLES = frozenset({"admin", "support", "operations"})


def normalize_priority(priority: Any) -> str:
    if not priority:
        return DEFAULT_PRIORITY
    normalized = str(priority).strip().lower()
    return normalized if normalized in ALLOWED_PRIORITIES else DEFAULT_PRIORITY


def assert_valid_support_status(status: Any) -> str:
    if status is None:
        raise InvalidArgument("status is required")
    normalized = str(status).strip().lower()
    if normalized not in ALLOWED_STATUSES:
        raise InvalidArgument(f"Unsupported status: {status}")
    return normalized


def is_support_agent(claims: Any) -> bool:
    if not isinstance(claims, dict):
        return False
    roles = claims.get("roles") if isinstance(claims.get("roles"), (list, tuple, set)) else ()
    groups = claims.get("groups") if isinstance(claims.get("groups"), (list, tuple, set)) else ()
    return bool(
        claims.get("role") == "admin"
        or claims.get("admin") is True
        or claims.get("support") is True
        or _AGENT_ROLES.intersection(roles)
        or _AGENT_ROLES.intersection(groups)
    )


def can_transition_status(current_status: Any, next_status: Any, by_support_agent: bool) -> bool:
    origin = assert_valid_support_status(current_status or "open")
    target = assert_valid_support_status(next_status)
    if origin == target:
        return True
    transitions = SUPPORT_TRANSITIONS if by_support_agent else CUSTOMER_TRANSITIONS
    return target in transitions.get(origin, ())


def compute_next_status_on_comment(current_status: Any, author_role: Any) -> str:
    status = assert_valid_support_status(current_status or "open")
    if author_role == "support":
        if status in ("resolved", "closed"):
            return status
        return "pending_user"
    if status == "resolved":
        return "open"
    if status == "pending_user":
        return "pending_support"
    if status == "closed":
        return "closed"
    return "pending_support"


def _ticket_path(ticket_id: str) -> str:
    return f"{SUPPORT_COLLECTION}/{ticket_id}"


def _load_ticket(txn: Transaction, ticket_id: str, user_id: str, by_agent: bool) -> dict[str, Any]:
    ticket = txn.get(_ticket_path(ticket_id))
    if ticket is None or (not by_agent and ticket.get("userId") != user_id):
        raise NotFound("Support ticket not found")
    return ticket


def create_support_ticket(
    store: DocumentStore,
    user_id: str,
    subject: Any,
    message: Any,
    *,
    priority: Any = None,
    category: str | None = None,
) -> dict[str, Any]:
    if not user_id:
        raise Unauthenticated("Sign in to contact support.")
    subject_text = str(subject or "").strip()
    message_text = str(message or "").strip()
    if not subject_text or not message_text:
        raise InvalidArgument("Subject and message are required")
    now = utc_now_iso()
    ticket = {
        "userId": user_id,
        "subject": subject_text,
        "category": category or "general",
        "priority": normalize_priority(priority),
        "status": "open",
        "comments": [{"authorId": user_id, "authorRole": "customer", "message": message_text, "createdAt": now}],
        "createdAt": now,
        "updatedAt": now,
    }
    ticket_id = store.add(SUPPORT_COLLECTION, ticket)
    logger.info("Support ticket created ticket_id=%s user_id=%s priority=%s", ticket_id, user_id, ticket["priority"])
    return {"id": ticket_id, **ticket}


def add_ticket_comment(
    store: DocumentStore,
    ticket_id: str,
    user_id: str,
    message: Any,
    *,
    claims: Any = None,
) -> dict[str, Any]:
    text = str(message or "").strip()
    if not text:
        raise InvalidArgument("Comment message is required")
    by_agent = is_support_agent(claims)
    role = "support" if by_agent else "customer"

    def _apply(txn: Transaction) -> dict[str, Any]:
        ticket = _load_ticket(txn, ticket_id, user_id, by_agent)
        now = utc_now_iso()
        ticket["comments"] = list(ticket.get("comments") or []) + [
            {"authorId": user_id, "authorRole": role, "message": text, "createdAt": now}
        ]
        ticket["status"] = compute_next_status_on_comment(ticket.get("status"), role)
        ticket["updatedAt"] = now
        txn.set(_ticket_path(ticket_id), ticket)
        return ticket

    ticket = store.run_transaction(_apply)
    return {"id": ticket_id, **ticket}


def update_ticket_status(
    store: DocumentStore,
    ticket_id: str,
    user_id: str,
    next_status: Any,
    *,
    claims: Any = None,
) -> dict[str, Any]:
    target = assert_valid_support_status(next_status)
    by_agent = is_support_agent(claims)

    def _apply(txn: Transaction) -> dict[str, Any]:
        ticket = _load_ticket(txn, ticket_id, user_id, by_agent)
        current = ticket.get("status") or "open"
        if not can_transition_status(current, target, by_agent):
            raise FailedPrecondition(
                f"Cannot move ticket from {current} to {target}",
                details={"from": current, "to": target},
            )
        ticket["status"] = target
        ticket["updatedAt"] = utc_now_iso()
        txn.set(_ticket_path(ticket_id), ticket)
        return ticket

    ticket = store.run_transaction(_apply)
    logger.info("Support ticket status ticket_id=%s status=%s by_agent=%s", ticket_id, target, by_agent)
    return {"id": ticket_id, **ticket}
