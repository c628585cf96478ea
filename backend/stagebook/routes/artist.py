# backend/stagebook/routes/artist.py
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import get_current_artist
from stagebook.db import end_implicit_transaction, get_session
from stagebook.errors import Conflict, NotFound
from stagebook.models import Artist, Booking, Service
from stagebook.responses import ok
from stagebook.routes.schemas import (
    ArtistOut, BookingOut, ServiceOut, WithdrawalCreate, WithdrawalOut, wallet_out,
)
from stagebook.services.booking import (
    create_offline_booking, get_booking, list_bookings, update_booking_status,
)
from stagebook.services.wallet import WalletOwner, list_withdrawals, request_withdrawal, wallet_summary

router = APIRouter(prefix="/api/artist", tags=["artist"])


class ProfileUpdate(BaseModel):
    bio: Optional[str] = None
    categories: Optional[List[str]] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class ServiceCreate(BaseModel):
    category: str = Field(..., min_length=1)
    unit: Literal["hour", "day", "event"] = "day"
    price_for_user: Optional[float] = Field(None, ge=0)
    price_for_planner: Optional[float] = Field(None, ge=0)
    advance: float = Field(0, ge=0)


class ServiceUpdate(BaseModel):
    # unit is fixed once a service exists
    category: Optional[str] = None
    price_for_user: Optional[float] = Field(None, ge=0)
    price_for_planner: Optional[float] = Field(None, ge=0)
    advance: Optional[float] = Field(None, ge=0)


class OfflineBookingCreate(BaseModel):
    service_id: int
    start_at: datetime
    end_at: datetime
    total_price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


def _money(values: dict) -> dict:
    for key in ("price_for_user", "price_for_planner", "advance"):
        if values.get(key) is not None:
            values[key] = Decimal(str(values[key]))
    return values


@router.get("/profile")
async def get_profile(artist: Artist = Depends(get_current_artist)):
    return ok("Artist profile", ArtistOut.model_validate(artist))


@router.put("/profile")
async def update_profile(payload: ProfileUpdate, artist: Artist = Depends(get_current_artist),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(select(Artist).where(Artist.id == artist.id).with_for_update())
        row = res.scalars().first()
        changes = payload.model_dump(exclude_unset=True)
        if "categories" in changes:
            cats = [c.strip() for c in (changes.pop("categories") or []) if c and c.strip()]
            row.categories = ",".join(dict.fromkeys(cats))
        for field, value in changes.items():
            setattr(row, field, value)
        await session.flush()
    return ok("Profile updated", ArtistOut.model_validate(row))


@router.get("/services")
async def my_services(artist: Artist = Depends(get_current_artist), session: AsyncSession = Depends(get_session)):
    res = await session.execute(select(Service).where(Service.artist_id == artist.id).order_by(Service.id))
    return ok("Services", [ServiceOut.model_validate(s) for s in res.scalars().all()])


@router.post("/services", status_code=status.HTTP_201_CREATED)
async def create_service(payload: ServiceCreate, artist: Artist = Depends(get_current_artist),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    async with session.begin():
        service = Service(artist_id=artist.id, **_money(payload.model_dump()))
        session.add(service)
        await session.flush()
    return ok("Service created", ServiceOut.model_validate(service))


async def _own_service(session: AsyncSession, artist: Artist, service_id: int) -> Service:
    res = await session.execute(
        select(Service).where(Service.id == service_id, Service.artist_id == artist.id).with_for_update()
    )
    service = res.scalars().first()
    if not service:
        raise NotFound("Service not found")
    return service


@router.put("/services/{service_id}")
async def update_service(service_id: int, payload: ServiceUpdate, artist: Artist = Depends(get_current_artist),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    async with session.begin():
        service = await _own_service(session, artist, service_id)
        for field, value in _money(payload.model_dump(exclude_unset=True)).items():
            if value is not None or field.startswith("price_"):
                setattr(service, field, value)
        await session.flush()
    return ok("Service updated", ServiceOut.model_validate(service))


@router.delete("/services/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_service(service_id: int, artist: Artist = Depends(get_current_artist),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    async with session.begin():
        service = await _own_service(session, artist, service_id)
        res = await session.execute(
            select(Booking.id).where(Booking.service_id == service.id).limit(1)
        )
        if res.first() is not None:
            raise Conflict("Service has bookings and cannot be deleted")
        await session.delete(service)
    return None


@router.get("/bookings")
async def artist_bookings(status_filter: Optional[str] = Query(None, alias="status"),
                          artist: Artist = Depends(get_current_artist),
                          session: AsyncSession = Depends(get_session)):
    bookings = await list_bookings(session, artist_id=artist.id, status=status_filter)
    return ok("Bookings", [BookingOut.model_validate(b) for b in bookings])


@router.post("/bookings/offline", status_code=status.HTTP_201_CREATED)
async def offline_booking(payload: OfflineBookingCreate, artist: Artist = Depends(get_current_artist),
                          session: AsyncSession = Depends(get_session)):
    booking = await create_offline_booking(
        session, artist.id, payload.service_id, payload.start_at, payload.end_at,
        total_price=payload.total_price, notes=payload.notes, created_by=artist.user_id,
    )
    return ok("Offline booking recorded", BookingOut.model_validate(booking))


@router.patch("/bookings/{booking_id}/status")
async def change_booking_status(booking_id: int, payload: StatusUpdate, artist: Artist = Depends(get_current_artist),
                                session: AsyncSession = Depends(get_session)):
    booking = await get_booking(session, booking_id)
    if booking.artist_id != artist.id:
        raise NotFound("Booking not found")
    booking = await update_booking_status(session, booking_id, payload.status)
    return ok("Booking status updated", BookingOut.model_validate(booking))


@router.get("/wallet")
async def artist_wallet(artist: Artist = Depends(get_current_artist), session: AsyncSession = Depends(get_session)):
    summary = await wallet_summary(session, WalletOwner("artist", artist.id))
    return ok("Wallet", wallet_out(summary))


@router.post("/withdrawals", status_code=status.HTTP_201_CREATED)
async def artist_withdraw(payload: WithdrawalCreate, artist: Artist = Depends(get_current_artist),
                          session: AsyncSession = Depends(get_session)):
    withdrawal = await request_withdrawal(
        session, WalletOwner("artist", artist.id), payload.amount, payload.bank_details(),
    )
    return ok("Withdrawal requested", WithdrawalOut.model_validate(withdrawal))


@router.get("/withdrawals")
async def artist_withdrawals(artist: Artist = Depends(get_current_artist), session: AsyncSession = Depends(get_session)):
    rows = await list_withdrawals(session, owner=WalletOwner("artist", artist.id))
    return ok("Withdrawals", [WithdrawalOut.model_validate(w) for w in rows])
