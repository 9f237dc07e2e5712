from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Header, HTTPException, status
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from scoped_rbac.logging_config import logger
from scoped_rbac.settings import settings


@dataclass(frozen=True)
class AuthenticatedUser:
    id: UUID
    is_superuser: bool = False


def _require_secret_key() -> str:
    secret = (settings.secret_key or "").strip()
    if not secret:
        raise RuntimeError("missing RBAC_SECRET_KEY")
    return secret


def create_access_token(
    user_id: UUID | str,
    *,
    is_superuser: bool = False,
    expires_in_minutes: int | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """Sign an access token carrying `sub` and `is_superuser`."""
    now = datetime.datetime.now(datetime.UTC)
    minutes = expires_in_minutes or settings.access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "is_superuser": bool(is_superuser),
        "iat": now,
        "exp": now + datetime.timedelta(minutes=minutes),
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, _require_secret_key(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AuthenticatedUser:
    try:
        payload = jwt.decode(token, _require_secret_key(), algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise ValueError("token 已过期") from exc
    except JWTError as exc:
        raise ValueError("token 无效") from exc

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise ValueError("token sub 非法") from exc
    return AuthenticatedUser(id=user_id, is_superuser=bool(payload.get("is_superuser", False)))


async def require_jwt_token(
    authorization: str | None = Header(default=None),
) -> AuthenticatedUser:
    """
    解析 `Authorization: Bearer <jwt>`，返回当前用户。
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header, expected 'Bearer <token>'",
        )
    try:
        return decode_access_token(token.strip())
    except ValueError as exc:
        logger.info("rbac auth: rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


__all__ = [
    "AuthenticatedUser",
    "create_access_token",
    "decode_access_token",
    "require_jwt_token",
]
