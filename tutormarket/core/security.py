"""JWT helpers for the bearer tokens issued by the identity provider."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from tutormarket.core.config import get_settings
from tutormarket.shared.exceptions import AuthenticationException

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(subject: str, expires_delta: timedelta | None = None, **claims: Any) -> str:
    """Create signed access token, mainly for seeding and tests."""
    settings = get_settings()
    payload: dict[str, Any] = {
        "sub": subject,
        "type": "access",
        "exp": datetime.now(UTC) + (expires_delta or timedelta(minutes=30)),
    }
    payload.update(claims)
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthenticationException("Invalid token") from exc
