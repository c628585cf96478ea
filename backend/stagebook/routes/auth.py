# backend/stagebook/routes/auth.py
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import create_access_token, get_current_user
from stagebook.db import end_implicit_transaction, get_session
from stagebook.errors import Conflict, Unauthorized, ValidationError
from stagebook.models import Artist, PlannerProfile, User
from stagebook.redis_tools import (
    OTP_BURNED, OTP_MISSING, OTP_VERIFIED, generate_otp, store_otp, verify_otp,
)
from stagebook.responses import ok
from stagebook.routes.schemas import UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

_email_address = TypeAdapter(EmailStr)


class OtpRequest(BaseModel):
    channel: Literal["email", "phone"]
    destination: str = Field(..., min_length=3)


class OtpVerify(OtpRequest):
    code: str = Field(..., min_length=4, max_length=8)
    role: Literal["user", "artist", "planner"] = "user"
    display_name: Optional[str] = None


def _normalize(channel: str, destination: str) -> str:
    destination = destination.strip()
    if channel == "email":
        try:
            return str(_email_address.validate_python(destination)).lower()
        except PydanticValidationError:
            raise ValidationError("Invalid email address")
    return destination.replace(" ", "")


@router.post("/otp/request")
async def request_otp(payload: OtpRequest):
    destination = _normalize(payload.channel, payload.destination)
    code = generate_otp()
    await store_otp(payload.channel, destination, code)
    # delivery goes through the email/SMS provider; only the fact is logged here
    logger.info("otp issued via %s to %s", payload.channel, destination)
    return ok("OTP sent")


async def _find_or_create_user(session: AsyncSession, payload: OtpVerify, destination: str) -> User:
    column = User.email if payload.channel == "email" else User.phone
    res = await session.execute(select(User).where(column == destination))
    user = res.scalars().first()
    if user:
        return user

    await end_implicit_transaction(session)
    try:
        async with session.begin():
            user = User(role=payload.role, display_name=payload.display_name)
            if payload.channel == "email":
                user.email = destination
            else:
                user.phone = destination
            session.add(user)
            await session.flush()
            if payload.role == "artist":
                session.add(Artist(user_id=user.id))
            elif payload.role == "planner":
                session.add(PlannerProfile(user_id=user.id))
            await session.flush()
            await session.refresh(user)
            logger.info("registered %s user %s via %s", payload.role, user.id, payload.channel)
            return user
    except IntegrityError:
        # another verify for the same destination registered first
        raise Conflict("Account already registered, please log in again")


@router.post("/otp/verify")
async def verify(payload: OtpVerify, session: AsyncSession = Depends(get_session)):
    destination = _normalize(payload.channel, payload.destination)
    result = await verify_otp(payload.channel, destination, payload.code)
    if result == OTP_MISSING:
        raise Unauthorized("OTP expired or not requested")
    if result == OTP_BURNED:
        raise Unauthorized("Too many attempts, request a new OTP")
    if result != OTP_VERIFIED:
        raise Unauthorized("Invalid OTP")

    user = await _find_or_create_user(session, payload, destination)
    token = create_access_token(user.id, user.role)
    return ok("Logged in", {
        "access_token": token,
        "token_type": "bearer",
        "user": UserOut.model_validate(user),
    })


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return ok("Current user", UserOut.model_validate(user))
