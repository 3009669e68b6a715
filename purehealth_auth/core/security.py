"""
Security Utilities

JWT session tokens issued after a successful passkey ceremony.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

from purehealth_auth.config import get_settings


def _encode(claims: dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    to_encode = claims.copy()
    to_encode.update(
        {
            "exp": datetime.now(UTC) + expires_delta,
            "type": token_type,
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
    )
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary of claims to encode in the token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    return _encode(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> tuple[str, str]:
    """
    Create a JWT refresh token carrying a unique JTI.

    Returns:
        Tuple of (encoded JWT token string, JTI)
    """
    settings = get_settings()
    jti = str(uuid4())
    token = _encode(
        {**data, "jti": jti},
        "refresh",
        expires_delta or timedelta(days=settings.refresh_token_expire_days),
    )
    return token, jti


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any] | None:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode
        expected_type: If provided, validates that token type matches (e.g., "access", "refresh")

    Returns:
        Decoded token payload or None if invalid/expired/wrong type
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except jwt.InvalidTokenError:
        return None

    if expected_type is not None and payload.get("type") != expected_type:
        return None
    return payload
