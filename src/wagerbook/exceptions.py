"""Domain error taxonomy.

Every failure carries a stable ``kind`` and a human-readable ``detail``.
The HTTP layer maps ``status_code`` directly (see middleware.error_handler).
"""

from __future__ import annotations


class WagerbookError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "detail": self.detail}


class ValidationError(WagerbookError):
    """Malformed input: bad option count, missing field, non-positive wager."""

    kind = "validation_error"
    status_code = 400


class Unauthorized(WagerbookError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(WagerbookError):
    kind = "forbidden"
    status_code = 403


class NotFound(WagerbookError):
    kind = "not_found"
    status_code = 404


class Conflict(WagerbookError):
    """Business-rule violation: betting window closed, insufficient balance."""

    kind = "conflict"
    status_code = 409
