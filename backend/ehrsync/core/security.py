"""JWT handling for sync clients.

Tokens are issued by the main EHR login flow. This service validates them on
every request and can mint them for seeding and tests. A token may be bound
to the device it was issued to (``dev`` claim), which then serves as the
default device id for queued items.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials

from ehrsync.config import settings

REQUIRED_CLAIMS = ["sub", "exp", "iat"]


def create_access_token(
    user_id: uuid.UUID,
    expires_delta: timedelta | None = None,
    *,
    device_id: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=settings.JWT_EXPIRY_HOURS)),
        "jti": str(uuid.uuid4()),
    }
    if device_id:
        payload["dev"] = device_id
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Validate signature, expiry and required claims. Raises jwt.PyJWTError."""
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )


def extract_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    """Bearer header first; the auth cookie covers ``navigator.sendBeacon``,
    which cannot set headers."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or None
