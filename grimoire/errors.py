"""Error taxonomy shared by the engines and the HTTP layer."""

from __future__ import annotations

from typing import Any


class GrimoireError(Exception):
    """Base error carrying a stable code and a user-facing message."""

    code = "internal"
    http_status = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class InvalidArgument(GrimoireError):
    code = "invalid-argument"
    http_status = 400


class Unauthenticated(GrimoireError):
    code = "unauthenticated"
    http_status = 401


class NotFound(GrimoireError):
    code = "not-found"
    http_status = 404


class FailedPrecondition(GrimoireError):
    code = "failed-precondition"
    http_status = 412


class ResourceExhausted(GrimoireError):
    code = "resource-exhausted"
    http_status = 429


class Internal(GrimoireError):
    code = "internal"
    http_status = 500
