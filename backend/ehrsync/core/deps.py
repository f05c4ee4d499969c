"""FastAPI dependencies: caller identity, role checks, device id."""

import logging
import uuid
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ehrsync.core.security import decode_access_token, extract_token
from ehrsync.database import get_db
from ehrsync.models.enums import UserRole
from ehrsync.models.user import User

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Resolve the calling user from the access token. 401 on any failure."""
    token = extract_token(request, credentials)
    if token is None:
        raise _unauthorized("Authentication required.")

    try:
        claims = decode_access_token(token)
        user_id = uuid.UUID(claims["sub"])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expired. Please log in again.")
    except (jwt.PyJWTError, ValueError):
        raise _unauthorized("Invalid authentication token.")

    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.is_deleted == False,  # noqa: E712
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized("Account not found or deactivated.")

    request.state.token_device_id = claims.get("dev")
    return user


def require_role(*allowed_roles: UserRole):
    """Dependency factory: restrict endpoint to specific roles."""
    async def role_checker(
        request: Request,
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if user.role not in allowed_roles:
            logger.warning(
                "User %s (%s) denied %s %s",
                user.id,
                user.role.value,
                request.method,
                request.url.path,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action.",
            )
        return user
    return role_checker


async def get_device_id(
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    x_device_id: Annotated[str | None, Header(max_length=100)] = None,
) -> str | None:
    """Device id from the X-Device-ID header, else the token's ``dev`` claim."""
    return x_device_id or getattr(request.state, "token_device_id", None)
