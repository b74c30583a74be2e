"""
Bearer-token verification for engine callers.

Tokens are issued by the external identity service; the engine only
verifies them and turns the claims into an ``Actor`` (id + roles) that
the capability checks in ``core.rbac`` operate on.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials as HTTPAuthCredentials
from pydantic import BaseModel, Field

from app.config import get_settings
from core.exceptions import UnauthorizedError

ALGORITHM = "HS256"

security_scheme = HTTPBearer(auto_error=False)


class Actor(BaseModel):
    """An authenticated caller: a TriggerOperator, WorkerService or manager."""

    id: str
    roles: List[str] = Field(default_factory=list)
    email: Optional[str] = None


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str
    roles: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    exp: datetime
    iat: datetime
    type: str  # "access" only

    def to_actor(self) -> Actor:
        return Actor(id=self.sub, roles=self.roles, email=self.email)


def create_access_token(
    actor_id: str,
    roles: List[str],
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Create a signed access token for an actor.

    Used by tooling and tests; production tokens come from the identity service
    sharing SECRET_KEY.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": actor_id,
        "roles": list(roles),
        "email": email,
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> TokenPayload:
    """
    Verify and decode a JWT token.

    Raises:
        UnauthorizedError: If token is invalid, expired or lacks a subject
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")

    if payload.get("sub") is None:
        raise UnauthorizedError("Invalid token payload")

    return TokenPayload(
        sub=payload["sub"],
        roles=payload.get("roles") or [],
        email=payload.get("email"),
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        type=payload.get("type", ""),
    )


async def get_current_actor(
    credentials: Optional[HTTPAuthCredentials] = Depends(security_scheme),
) -> Actor:
    """FastAPI dependency: resolve the calling actor from the Authorization header."""
    if not credentials:
        raise UnauthorizedError("Missing authorization header")

    token_payload = verify_token(credentials.credentials)
    if token_payload.type != "access":
        raise UnauthorizedError("Invalid token type")

    return token_payload.to_actor()
