"""Caller identity from a Bearer JWT (HS256) carrying ``id`` and ``role``."""

from __future__ import annotations

import time
from dataclasses import dataclass

import jwt
from fastapi import Header, HTTPException

from services import config

ADMIN_ROLE = "admin"
ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(
    secret: str,
    user_id: str,
    *,
    role: str = "user",
    expiration_seconds: int = 3600,
) -> str:
    """Sign a token for ``user_id``. iat is set 60s in the past to tolerate clock skew."""
    now = int(time.time())
    payload = {
        "id": user_id,
        "role": role,
        "iat": now - 60,
        "exp": now + expiration_seconds,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Principal:
    """Raises ``jwt.InvalidTokenError`` for a bad signature, expiry or a missing ``id``."""
    payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    user_id = payload.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise jwt.InvalidTokenError("token carries no user id")
    return Principal(id=user_id, role=str(payload.get("role") or "user"))


def _get_secret() -> str:
    secret = config.get_jwt_secret()
    if not secret:
        raise HTTPException(status_code=503, detail="Authentication is not configured (JWT_SECRET)")
    return secret


def get_principal(authorization: str | None = Header(default=None)) -> Principal:
    """FastAPI dependency: 401 unless a valid Bearer token is present."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return decode_access_token(token.strip(), _get_secret())
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}") from exc
