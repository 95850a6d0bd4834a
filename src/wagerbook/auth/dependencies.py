"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wagerbook.auth.jwt import verify_token
from wagerbook.exceptions import Forbidden, Unauthorized

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """The identified caller of a request."""

    user_id: str
    is_admin: bool = False


def _decode_caller(credentials: HTTPAuthorizationCredentials) -> Caller:
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise Unauthorized(str(e)) from e
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise Unauthorized("Token has no subject")
    return Caller(user_id=user_id, is_admin=payload.get("is_admin") is True)


async def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> Caller | None:
    """Caller if a bearer token was sent, otherwise None. Invalid tokens still fail."""
    if credentials is None:
        return None
    return _decode_caller(credentials)


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> Caller:
    """Require an identified caller. Raises 401 on a missing or invalid token."""
    if credentials is None:
        raise Unauthorized("Authentication required")
    return _decode_caller(credentials)


async def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    """Require a caller flagged as administrator. Raises 403 otherwise."""
    if not caller.is_admin:
        raise Forbidden("Admin only")
    return caller
