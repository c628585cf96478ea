# backend/stagebook/routes/admin.py
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import end_implicit_transaction, get_session
from stagebook.errors import NotFound, ValidationError
from stagebook.jobs import run_sweep
from stagebook.models import Artist, User
from stagebook.payments import PaymentGateway, get_gateway
from stagebook.responses import ok
from stagebook.routes.schemas import ArtistOut, BookingOut, CommissionOut, UserOut, WithdrawalOut
from stagebook.services.booking import list_bookings, update_booking_status
from stagebook.services.wallet import (
    WalletOwner, create_commission, latest_commission, list_withdrawals, process_withdrawal,
    reconcile_wallet, reject_withdrawal, update_commission,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class VerificationUpdate(BaseModel):
    status: Literal["pending", "verified", "rejected"]
    note: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


class WithdrawalDecision(BaseModel):
    admin_note: Optional[str] = None


class CommissionCreate(BaseModel):
    artist_booking_commission: float = Field(..., ge=0, le=100)
    ticket_sell_commission: float = Field(..., ge=0, le=100)


class CommissionUpdate(BaseModel):
    artist_booking_commission: Optional[float] = Field(None, ge=0, le=100)
    ticket_sell_commission: Optional[float] = Field(None, ge=0, le=100)


@router.get("/users")
async def admin_list_users(limit: int = 100, session: AsyncSession = Depends(get_session)):
    res = await session.execute(select(User).order_by(User.created_at.desc(), User.id.desc()).limit(limit))
    return ok("Users", [UserOut.model_validate(u) for u in res.scalars().all()])


@router.get("/artists")
async def admin_list_artists(verification: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    q = select(Artist)
    if verification:
        q = q.where(Artist.verification_status == verification)
    res = await session.execute(q.order_by(Artist.id))
    return ok("Artists", [ArtistOut.model_validate(a) for a in res.scalars().all()])


@router.patch("/artists/{artist_id}/verification")
async def verify_artist(artist_id: int, payload: VerificationUpdate, session: AsyncSession = Depends(get_session)):
    if payload.status == "rejected" and not (payload.note or "").strip():
        raise ValidationError("A note is required when rejecting verification")
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(select(Artist).where(Artist.id == artist_id).with_for_update())
        artist = res.scalars().first()
        if not artist:
            raise NotFound("Artist not found")
        artist.verification_status = payload.status
        artist.verification_note = (payload.note or "").strip()
        await session.flush()
    return ok("Verification updated", ArtistOut.model_validate(artist))


@router.get("/bookings")
async def admin_bookings(status_filter: Optional[str] = Query(None, alias="status"),
                         artist_id: Optional[int] = None, session: AsyncSession = Depends(get_session)):
    bookings = await list_bookings(session, artist_id=artist_id, status=status_filter)
    return ok("Bookings", [BookingOut.model_validate(b) for b in bookings])


@router.patch("/bookings/{booking_id}/status")
async def admin_booking_status(booking_id: int, payload: StatusUpdate, session: AsyncSession = Depends(get_session)):
    booking = await update_booking_status(session, booking_id, payload.status)
    return ok("Booking status updated", BookingOut.model_validate(booking))


@router.get("/withdrawals")
async def admin_withdrawals(status_filter: Optional[str] = Query(None, alias="status"),
                            session: AsyncSession = Depends(get_session)):
    rows = await list_withdrawals(session, status=status_filter)
    return ok("Withdrawals", [WithdrawalOut.model_validate(w) for w in rows])


@router.post("/withdrawals/{withdrawal_id}/process")
async def admin_process_withdrawal(withdrawal_id: int, payload: Optional[WithdrawalDecision] = None,
                                   session: AsyncSession = Depends(get_session)):
    note = payload.admin_note if payload else None
    withdrawal = await process_withdrawal(session, withdrawal_id, admin_note=note)
    return ok("Withdrawal processed", WithdrawalOut.model_validate(withdrawal))


@router.post("/withdrawals/{withdrawal_id}/reject")
async def admin_reject_withdrawal(withdrawal_id: int, payload: WithdrawalDecision,
                                  session: AsyncSession = Depends(get_session)):
    withdrawal = await reject_withdrawal(session, withdrawal_id, payload.admin_note)
    return ok("Withdrawal rejected", WithdrawalOut.model_validate(withdrawal))


@router.get("/commission")
async def current_commission(session: AsyncSession = Depends(get_session)):
    row = await latest_commission(session)
    return ok("Commission", CommissionOut.model_validate(row) if row else None)


@router.post("/commission", status_code=status.HTTP_201_CREATED)
async def new_commission(payload: CommissionCreate, session: AsyncSession = Depends(get_session)):
    row = await create_commission(session, str(payload.artist_booking_commission), str(payload.ticket_sell_commission))
    return ok("Commission created", CommissionOut.model_validate(row))


@router.put("/commission/{commission_id}")
async def edit_commission(commission_id: int, payload: CommissionUpdate, session: AsyncSession = Depends(get_session)):
    row = await update_commission(
        session, commission_id,
        artist_booking_commission=None if payload.artist_booking_commission is None else str(payload.artist_booking_commission),
        ticket_sell_commission=None if payload.ticket_sell_commission is None else str(payload.ticket_sell_commission),
    )
    return ok("Commission updated", CommissionOut.model_validate(row))


@router.get("/wallets/{owner_type}/{owner_id}/reconcile")
async def reconcile(owner_type: str, owner_id: int, repair: bool = False,
                    session: AsyncSession = Depends(get_session)):
    report = await reconcile_wallet(session, WalletOwner(owner_type, owner_id), repair=repair)
    return ok("Wallet reconciled", report)


@router.post("/sweep")
async def sweep_now(gateway: PaymentGateway = Depends(get_gateway)):
    summary = await run_sweep(gateway=gateway)
    return ok("Sweep finished", summary)
