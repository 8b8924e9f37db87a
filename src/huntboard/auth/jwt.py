"""
Bearer token verification for identity-provider sessions.

Sign-up, login and password flows live at the identity provider. It issues
HS256 access tokens whose ``sub`` claim is the user id and whose
``user_metadata`` may carry a display name and avatar. This module only
verifies those tokens; ``create_access_token`` mints compatible tokens for
local development and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from huntboard.config import get_settings


def create_access_token(
    user_id: str,
    name: str | None = None,
    avatar_url: str | None = None,
    *,
    expires_in_minutes: int | None = None,
) -> str:
    """
    Create an access token shaped like the identity provider's.

    Args:
        user_id: The user's id (becomes the ``sub`` claim).
        name: Optional display name placed in ``user_metadata``.
        avatar_url: Optional avatar URL placed in ``user_metadata``.
        expires_in_minutes: Override the configured lifetime.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    lifetime = expires_in_minutes if expires_in_minutes is not None else settings.jwt_access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": user_id,
        "aud": settings.jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
        "user_metadata": {"name": name, "avatar_url": avatar_url},
    }
    if settings.jwt_issuer:
        payload["iss"] = settings.jwt_issuer
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired or lacks a subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not payload.get("sub"):
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)

    return payload
