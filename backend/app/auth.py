from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


bearer_scheme = HTTPBearer(auto_error=False)

# revenue managers author rates, admins approve and distribute
RATE_AUTHORS = ["revenue_manager", "admin"]
RATE_APPROVERS = ["admin"]
RESERVATION_AGENTS = ["front_desk", "revenue_manager", "admin"]


def _jwt_secret() -> str:
    return os.environ.get("JWT_SECRET", "dev_jwt_secret_change_me")


def create_access_token(*, user_id: str, role: str, property_id: Optional[str] = None, minutes: int = 60 * 12) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "pid": property_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict[str, Any]:
    """Principal carried by the token: {user_id, role, property_id}."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    payload = decode_token(credentials.credentials)
    if not payload.get("sub") or not payload.get("role"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return {"user_id": payload["sub"], "role": payload["role"], "property_id": payload.get("pid")}


def require_roles(required: list[str]):
    async def _dep(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
        if user.get("role") not in set(required):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return user

    return _dep
