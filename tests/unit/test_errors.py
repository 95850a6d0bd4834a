"""Unit tests for the domain error taxonomy."""

from __future__ import annotations

import pytest

from wagerbook.exceptions import Conflict, Forbidden, NotFound, Unauthorized, ValidationError, WagerbookError


@pytest.mark.parametrize(
    ("exc_type", "kind", "status_code"),
    [
        (ValidationError, "validation_error", 400),
        (Unauthorized, "unauthorized", 401),
        (Forbidden, "forbidden", 403),
        (NotFound, "not_found", 404),
        (Conflict, "conflict", 409),
    ],
)
def test_error_kinds(exc_type, kind, status_code):
    exc = exc_type("reason")
    assert isinstance(exc, WagerbookError)
    assert exc.kind == kind
    assert exc.status_code == status_code
    assert exc.to_dict() == {"error": kind, "detail": "reason"}
    assert str(exc) == "reason"
