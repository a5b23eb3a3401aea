"""
Bearer token verification.

Login, password hashing and token issuance belong to the auth service; this
module only verifies the HS256 JWTs it hands out and exposes the caller as a
Principal. Role checks are plain FastAPI dependencies, so they run before the
route handler in the order they are declared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from minicompete.core.config import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, Enum):
    ORGANIZER = "ORGANIZER"
    PARTICIPANT = "PARTICIPANT"


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role


def create_access_token(user_id: int, role: Role, expires_minutes: int = 60) -> str:
    """Issue a token the way the auth service does. Used by tests, seeding and load tests."""
    settings = get_settings()
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None:
        raise _unauthorized("Not authenticated")

    settings = get_settings()
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
        return Principal(user_id=int(claims["sub"]), role=Role(claims["role"]))
    except (jwt.PyJWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")


def require_role(*roles: Role):
    """Guard dependency: 403 unless the caller has one of the given roles."""

    async def guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return principal

    return guard
