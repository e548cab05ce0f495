"""User documents: profile bootstrap and updates, crystal collection, journal, account deletion."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from grimoire.catalog import find_by_name
from grimoire.document_store import DocumentStore, Transaction
from grimoire.errors import InvalidArgument, NotFound, Unauthenticated
from grimoire.plan_catalog import (
    PlanDetails,
    assert_within_total_limit,
    merge_plan_document,
    plan_document_path,
    resolve_plan_details,
)
from grimoire.usage_ledger import usage_document_path, utc_now_iso

logger = logging.getLogger("crystal_grimoire")

DEFAULT_DISPLAY_NAME = "Crystal Seeker"
DEFAULT_DAILY_CREDITS = 3
DEFAULT_SETTINGS: Mapping[str, bool] = {"notifications": True, "newsletter": True, "darkMode": True}

# Client-editable fields and where they live on the user document.
PROFILE_FIELD_MAP: Mapping[str, str] = {
    "displayName": "profile.displayName",
    "photoURL": "profile.photoURL",
    "birthChart": "profile.birthChart",
    "preferences": "profile.preferences",
    "location": "profile.location",
    "experience": "profile.experience",
    "zodiacSign": "profile.zodiacSign",
    "focusChakras": "profile.focusChakras",
    "element": "profile.element",
}

USER_SUBCOLLECTIONS = ("crystals", "journal", "identifications", "guidance", "collection", "dreams", "economy", "plan")

HIDDEN_PROFILE_FIELDS = ("internalNotes", "adminFlags")


def user_document_path(user_id: str) -> str:
    return f"users/{user_id}"


def _require_user(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise Unauthenticated("Must be authenticated")
    return user_id.strip()


def _absent(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_user_profile(existing: Any, incoming: Any) -> dict[str, Any]:
    """Merge two profile maps; a value already in ``existing`` wins unless it is absent.

    Nested maps are merged with the same rule. Neither input is modified.
    """
    base = dict(existing) if isinstance(existing, dict) else {}
    extra = incoming if isinstance(incoming, dict) else {}
    merged = dict(base)
    for key, value in extra.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_user_profile(current, value)
        elif _absent(current):
            merged[key] = value
    return merged


def _default_user_document(user_id: str, seed: Mapping[str, Any]) -> dict[str, Any]:
    now = utc_now_iso()
    return {
        "email": seed.get("email") or "",
        "profile": {
            "uid": user_id,
            "displayName": seed.get("displayName") or seed.get("name") or DEFAULT_DISPLAY_NAME,
            "photoURL": seed.get("photoURL") or seed.get("photoUrl"),
            "subscription": {"tier": seed.get("subscriptionTier") or "free", "status": "active", "updatedAt": now},
            "usage": {"monthlyIdentifications": 0, "totalIdentifications": 0, "metaphysicalQueries": 0},
            "credits": {"daily": DEFAULT_DAILY_CREDITS, "total": 0},
            "lastLoginAt": now,
        },
        "settings": dict(DEFAULT_SETTINGS),
        "createdAt": now,
        "updatedAt": now,
    }


def initialize_user_document(store: DocumentStore, user_id: str, seed: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Create or backfill the user document and their plan document in one transaction."""
    uid = _require_user(user_id)
    seed = dict(seed or {})
    user_path = user_document_path(uid)
    plan_path = plan_document_path(uid)

    def _apply(txn: Transaction) -> dict[str, Any]:
        existing = txn.get(user_path)
        document = merge_user_profile(existing, _default_user_document(uid, seed))
        document["updatedAt"] = utc_now_iso()
        document["profile"]["lastLoginAt"] = document["updatedAt"]
        txn.set(user_path, document)
        plan_doc = txn.get(plan_path)
        if plan_doc is None:
            tier = document["profile"].get("subscription", {}).get("tier")
            plan_doc = merge_plan_document(None, resolve_plan_details(tier))
            plan_doc["updatedAt"] = document["updatedAt"]
            txn.set(plan_path, plan_doc)
        return document

    document = store.run_transaction(_apply)
    logger.info("User document initialized user_id=%s", uid)
    return document


def get_user_profile(store: DocumentStore, user_id: str) -> dict[str, Any]:
    uid = _require_user(user_id)
    data = store.get(user_document_path(uid))
    if data is None:
        raise NotFound("User profile not found")
    for hidden in HIDDEN_PROFILE_FIELDS:
        data.pop(hidden, None)
    return data


def update_user_profile(store: DocumentStore, user_id: str, updates: Any) -> dict[str, Any]:
    uid = _require_user(user_id)
    if not isinstance(updates, dict):
        raise InvalidArgument("Profile updates must be an object")

    valid: dict[str, Any] = {}
    for key, value in updates.items():
        if key == "settings" and isinstance(value, dict):
            valid["settings"] = value
        elif key in PROFILE_FIELD_MAP:
            valid[PROFILE_FIELD_MAP[key]] = value
    if not valid:
        return {"success": True, "message": "No valid updates provided", "updated": []}

    now = utc_now_iso()
    valid["updatedAt"] = now
    valid["profile.updatedAt"] = now
    path = user_document_path(uid)
    if store.get(path) is None:
        raise NotFound("User profile not found")
    store.update(path, valid)
    updated = sorted(k for k in updates if k == "settings" or k in PROFILE_FIELD_MAP)
    logger.info("Profile updated user_id=%s fields=%s", uid, ",".join(updated))
    return {"success": True, "updated": updated}


def add_to_collection(
    store: DocumentStore,
    user_id: str,
    plan: PlanDetails,
    crystal_name: Any,
    *,
    notes: str | None = None,
    source: str = "manual",
) -> dict[str, Any]:
    uid = _require_user(user_id)
    name = str(crystal_name or "").strip()
    if not name:
        raise InvalidArgument("Crystal name is required")
    collection = f"users/{uid}/collection"
    assert_within_total_limit(plan, "collectionMax", len(store.query(collection)))

    record = find_by_name(name)
    entry = {
        "name": record.name if record is not None else name,
        "catalogId": record.id if record is not None else None,
        "notes": notes or "",
        "source": source,
        "addedAt": utc_now_iso(),
    }
    entry_id = store.add(collection, entry)
    logger.info("Collection entry added user_id=%s crystal=%s catalog_id=%s", uid, entry["name"], entry["catalogId"])
    return {"id": entry_id, **entry}


def list_owned_crystal_names(store: DocumentStore, user_id: str) -> list[str]:
    uid = _require_user(user_id)
    return [doc.data.get("name") for doc in store.query(f"users/{uid}/collection") if doc.data.get("name")]


def add_journal_entry(
    store: DocumentStore,
    user_id: str,
    plan: PlanDetails,
    content: Any,
    *,
    mood: str | None = None,
    crystals: list[str] | None = None,
) -> dict[str, Any]:
    uid = _require_user(user_id)
    text = str(content or "").strip()
    if not text:
        raise InvalidArgument("Journal entry content is required")
    journal = f"users/{uid}/journal"
    assert_within_total_limit(plan, "journalMax", len(store.query(journal)))
    entry = {
        "content": text,
        "mood": mood,
        "crystals": list(crystals or []),
        "createdAt": utc_now_iso(),
    }
    entry_id = store.add(journal, entry)
    return {"id": entry_id, **entry}


def delete_user_account(store: DocumentStore, user_id: str) -> dict[str, Any]:
    """Delete every user subcollection, the usage counters and finally the user document."""
    uid = _require_user(user_id)
    logger.info("Account deletion started user_id=%s", uid)
    deleted: dict[str, int] = {}
    for name in USER_SUBCOLLECTIONS:
        deleted[name] = store.delete_all(f"users/{uid}/{name}")
    store.delete(usage_document_path(uid))
    store.delete(user_document_path(uid))
    logger.info("Account deleted user_id=%s documents=%s", uid, sum(deleted.values()))
    return {"success": True, "deleted": deleted}
