"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from huntboard.auth.jwt import verify_token
from huntboard.database import get_session
from huntboard.db.models import Profile
from huntboard.profiles.service import ensure_profile

_bearer = HTTPBearer()


async def get_current_profile(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Profile:
    """
    Verify the bearer token and return the caller's Profile.

    The profile is created on first sight. Banned users are NOT rejected
    here: the ban is enforced by the activity writer and session start, so
    a banned user can still stop a session that was left open.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    metadata = payload.get("user_metadata") or {}
    return await ensure_profile(
        db,
        str(payload["sub"]),
        name=metadata.get("name") or payload.get("email"),
        avatar_url=metadata.get("avatar_url"),
    )
