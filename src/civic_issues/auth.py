from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .constants import Role
from .errors import Unauthorized
from .guard import ensure_can_view_admin_data

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the credential issuer on an authenticated request."""

    id: str
    role: Role


def create_access_token(user_id: str, role: Role | str = Role.USER, expires: timedelta | None = None) -> str:
    role = Role(role)
    expires = expires or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": user_id, "role": role.value, "exp": datetime.utcnow() + expires, "type": "access"}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_actor(token: str) -> Actor:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired. Please login again")
    except jwt.PyJWTError:
        raise Unauthorized("Invalid token")

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    try:
        role = Role(payload.get("role", Role.USER.value))
    except ValueError:
        raise Unauthorized("Invalid token")
    return Actor(id=user_id, role=role)


def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Actor]:
    if credentials is None:
        return None
    return decode_actor(credentials.credentials)


def get_current_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise Unauthorized("Access token required")
    return actor


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    ensure_can_view_admin_data(actor.role)
    return actor
