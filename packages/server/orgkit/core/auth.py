"""
Principal resolution for the HTTP layer.

The caller is identified by the ``sub`` claim of a signed JWT, i.e. the
auth provider's subject (the user's ``external_id``). A request without a
valid token has no principal; handlers report that as a validation error.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import APIKeyHeader

from orgkit.core.config import get_settings
from orgkit.core.context import Principal

log = structlog.get_logger()

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_access_token(
    external_id: str,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT whose subject is the caller's external id."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": external_id,
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------

async def get_principal(
    authorization: Optional[str] = Depends(authorization_header),
) -> Optional[Principal]:
    """Resolve the caller from a Bearer token."""
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()

    if not token:
        return None

    try:
        payload = decode_jwt(token)
    except jwt.PyJWTError as exc:
        log.warning("auth.invalid_token", reason=str(exc))
        return None

    subject = payload.get("sub")
    if not subject:
        log.warning("auth.token_without_subject")
        return None
    return Principal(external_id=str(subject))
