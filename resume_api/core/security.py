"""Caller identity from identity-provider bearer tokens."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from resume_api.config import settings
from resume_api.core.exceptions import Unauthenticated

TOKEN_TTL_MINUTES = 60
AUTH_SCHEME = HTTPBearer(auto_error=False)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _secret_key() -> str:
    return settings.auth_jwt_secret.get_secret_value()


def create_access_token(subject: str, extra: Dict[str, Any] | None = None) -> str:
    """Mint a token the way the identity provider does. Used by local tooling and tests."""
    payload: Dict[str, Any] = {
        "sub": subject,
        "iat": int(now_utc().timestamp()),
        "exp": int((now_utc() + timedelta(minutes=TOKEN_TTL_MINUTES)).timestamp()),
    }
    if settings.auth_jwt_issuer:
        payload["iss"] = settings.auth_jwt_issuer
    if settings.auth_jwt_audience:
        payload["aud"] = settings.auth_jwt_audience
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret_key(), algorithm=settings.auth_jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    options = {"require": ["sub", "exp"]}
    return jwt.decode(
        token,
        _secret_key(),
        algorithms=[settings.auth_jwt_algorithm],
        issuer=settings.auth_jwt_issuer,
        audience=settings.auth_jwt_audience,
        options=options,
    )


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
) -> Dict[str, Any]:
    if creds is None or not creds.credentials:
        raise Unauthenticated("Missing authorization token")
    try:
        payload = decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired token")

    user_id = str(payload.get("sub", "")).strip()
    if not user_id:
        raise Unauthenticated("Invalid token subject")
    return {
        "id": user_id,
        "email": payload.get("email"),
    }
