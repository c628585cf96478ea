# backend/stagebook/auth.py
"""
Request gates: the static API key on /api/*, bearer tokens for users, and the
admin key header.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook import config
from stagebook.db import get_session
from stagebook.errors import Forbidden, Unauthorized
from stagebook.models import Artist, PlannerProfile, User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def require_api_key(x_api_key: Optional[str] = Header(None)):
    if config.API_KEY and x_api_key != config.API_KEY:
        raise Unauthorized("Invalid or missing API key")


def require_admin(x_admin_key: Optional[str] = Header(None)):
    if x_admin_key is None or x_admin_key != config.ADMIN_KEY:
        raise Unauthorized("admin auth required")


def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("rejected bearer token: %s", e)
        raise Unauthorized("Invalid token")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Authentication required")
    payload = decode_access_token(credentials.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Invalid token")

    res = await session.execute(select(User).where(User.id == user_id))
    user = res.scalars().first()
    # release the read transaction so handlers can open their own
    await session.commit()
    if not user:
        raise Unauthorized("User no longer exists")
    return user


async def get_current_artist(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Artist:
    if user.role != "artist":
        raise Forbidden("Artist account required")
    res = await session.execute(select(Artist).where(Artist.user_id == user.id))
    artist = res.scalars().first()
    await session.commit()
    if not artist:
        raise Forbidden("Artist profile not found")
    return artist


async def get_current_planner(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PlannerProfile:
    if user.role != "planner":
        raise Forbidden("Planner account required")
    res = await session.execute(select(PlannerProfile).where(PlannerProfile.user_id == user.id))
    planner = res.scalars().first()
    await session.commit()
    if not planner:
        raise Forbidden("Planner profile not found")
    return planner
