"""
Bearer-token identity.

Tokens are issued elsewhere (the login flow is not part of this service);
we only decode them into the acting identity used for audit stamping and
the coarse staff check on administrative routes.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reservations.core.config import get_settings
from reservations.core.logging import bind_actor
from reservations.services.context import ROLE_GUEST, Actor, BookingPolicy, OperationContext

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized

    try:
        payload = decode_access_token(credentials.credentials)
        actor_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise unauthorized

    actor = Actor(
        id=actor_id,
        name=payload.get("name", f"user-{actor_id}"),
        role=payload.get("role", ROLE_GUEST),
    )
    bind_actor(actor.id, actor.role)
    return actor


async def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Actor]:
    """Like get_current_actor, but guests checking out without a token get None."""
    if credentials is None:
        return None
    return await get_current_actor(credentials)


async def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff role required",
        )
    return actor


def build_context(actor: Actor) -> OperationContext:
    return OperationContext(actor=actor, policy=BookingPolicy.from_settings())


async def get_operation_context(actor: Actor = Depends(get_current_actor)) -> OperationContext:
    return build_context(actor)


async def get_staff_context(actor: Actor = Depends(require_staff)) -> OperationContext:
    return build_context(actor)
