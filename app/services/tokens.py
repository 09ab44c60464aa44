from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    email: str
    role: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _signing_key() -> str:
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    return settings.jwt_secret


def create_session_token(
    user_id: str, email: str, role: str, now: datetime | None = None
) -> str:
    issued_at = now or _utcnow()
    expires_at = issued_at + timedelta(days=settings.session_token_expire_days)
    payload = {
        "userId": user_id,
        "email": email,
        "role": role,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, _signing_key(), algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> SessionClaims:
    if not token:
        raise TokenError("Token is missing")
    try:
        payload = jwt.decode(
            token,
            _signing_key(),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc

    user_id = payload.get("userId")
    email = payload.get("email")
    role = payload.get("role")
    if not user_id or not email or not role:
        raise TokenError("Token is missing identity claims")
    return SessionClaims(
        user_id=str(user_id),
        email=email,
        role=role,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
