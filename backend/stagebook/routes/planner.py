# backend/stagebook/routes/planner.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import get_current_planner
from stagebook.db import end_implicit_transaction, get_session
from stagebook.models import PlannerProfile
from stagebook.responses import ok
from stagebook.routes.schemas import (
    BookingOut, EventOut, PlannerOut, TicketOut, TicketTypeOut, WithdrawalCreate, WithdrawalOut, wallet_out,
)
from stagebook.services.booking import create_wallet_booking, list_bookings
from stagebook.services.tickets import (
    create_event, create_ticket_type, delete_ticket_type, list_events, list_ticket_types, scan_ticket,
    update_ticket_type,
)
from stagebook.services.wallet import WalletOwner, list_withdrawals, request_withdrawal, wallet_summary

router = APIRouter(prefix="/api/planner", tags=["planner"])


class PlannerUpdate(BaseModel):
    organization: Optional[str] = None


class WalletBookingCreate(BaseModel):
    artist_id: int
    service_id: int
    start_at: datetime
    end_at: datetime
    event_id: Optional[int] = None
    notes: Optional[str] = None


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    venue: Optional[str] = None
    start_at: datetime
    end_at: datetime
    published: bool = True


class TicketTypeCreate(BaseModel):
    title: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    sales_start: Optional[datetime] = None
    sales_end: Optional[datetime] = None


class TicketTypeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    sales_start: Optional[datetime] = None
    sales_end: Optional[datetime] = None


class ScanRequest(BaseModel):
    persons: int = Field(1, ge=1)


@router.get("/profile")
async def get_profile(planner: PlannerProfile = Depends(get_current_planner)):
    return ok("Planner profile", PlannerOut.model_validate(planner))


@router.put("/profile")
async def update_profile(payload: PlannerUpdate, planner: PlannerProfile = Depends(get_current_planner),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(
            select(PlannerProfile).where(PlannerProfile.id == planner.id).with_for_update()
        )
        row = res.scalars().first()
        if payload.organization is not None:
            row.organization = payload.organization
        await session.flush()
    return ok("Profile updated", PlannerOut.model_validate(row))


@router.post("/bookings", status_code=status.HTTP_201_CREATED)
async def wallet_booking(payload: WalletBookingCreate, planner: PlannerProfile = Depends(get_current_planner),
                         session: AsyncSession = Depends(get_session)):
    booking = await create_wallet_booking(
        session, planner, payload.artist_id, payload.service_id, payload.start_at, payload.end_at,
        event_id=payload.event_id, notes=payload.notes,
    )
    return ok("Booking confirmed", BookingOut.model_validate(booking))


@router.get("/bookings")
async def planner_bookings(status_filter: Optional[str] = Query(None, alias="status"),
                           planner: PlannerProfile = Depends(get_current_planner),
                           session: AsyncSession = Depends(get_session)):
    bookings = await list_bookings(session, client_id=planner.user_id, status=status_filter)
    return ok("Bookings", [BookingOut.model_validate(b) for b in bookings])


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def new_event(payload: EventCreate, planner: PlannerProfile = Depends(get_current_planner),
                    session: AsyncSession = Depends(get_session)):
    event = await create_event(
        session, planner, payload.title, payload.start_at, payload.end_at,
        venue=payload.venue, published=payload.published,
    )
    return ok("Event created", EventOut.model_validate(event))


@router.get("/events")
async def my_events(planner: PlannerProfile = Depends(get_current_planner),
                    session: AsyncSession = Depends(get_session)):
    events = await list_events(session, planner_id=planner.id)
    return ok("Events", [EventOut.model_validate(e) for e in events])


@router.post("/events/{event_id}/ticket-types", status_code=status.HTTP_201_CREATED)
async def new_ticket_type(event_id: int, payload: TicketTypeCreate,
                          planner: PlannerProfile = Depends(get_current_planner),
                          session: AsyncSession = Depends(get_session)):
    ticket_type = await create_ticket_type(
        session, planner, event_id, payload.title, payload.price, payload.quantity,
        sales_start=payload.sales_start, sales_end=payload.sales_end,
    )
    return ok("Ticket type created", TicketTypeOut.model_validate(ticket_type))


@router.get("/events/{event_id}/ticket-types")
async def event_ticket_types(event_id: int, planner: PlannerProfile = Depends(get_current_planner),
                             session: AsyncSession = Depends(get_session)):
    rows = await list_ticket_types(session, event_id)
    return ok("Ticket types", [TicketTypeOut.model_validate(t) for t in rows])


@router.put("/ticket-types/{ticket_type_id}")
async def edit_ticket_type(ticket_type_id: int, payload: TicketTypeUpdate,
                           planner: PlannerProfile = Depends(get_current_planner),
                           session: AsyncSession = Depends(get_session)):
    # `sold` is not part of the payload, so it can only move through purchases
    changes = payload.model_dump(exclude_unset=True)
    ticket_type = await update_ticket_type(session, planner, ticket_type_id, **changes)
    return ok("Ticket type updated", TicketTypeOut.model_validate(ticket_type))


@router.delete("/ticket-types/{ticket_type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_ticket_type(ticket_type_id: int, planner: PlannerProfile = Depends(get_current_planner),
                             session: AsyncSession = Depends(get_session)):
    await delete_ticket_type(session, planner, ticket_type_id)
    return None


@router.post("/tickets/{ticket_id}/scan")
async def scan(ticket_id: int, payload: ScanRequest, planner: PlannerProfile = Depends(get_current_planner),
               session: AsyncSession = Depends(get_session)):
    ticket = await scan_ticket(session, planner, ticket_id, persons=payload.persons)
    return ok("Ticket scanned", TicketOut.model_validate(ticket))


@router.get("/wallet")
async def planner_wallet(planner: PlannerProfile = Depends(get_current_planner),
                         session: AsyncSession = Depends(get_session)):
    summary = await wallet_summary(session, WalletOwner("planner", planner.id))
    return ok("Wallet", wallet_out(summary))


@router.post("/withdrawals", status_code=status.HTTP_201_CREATED)
async def planner_withdraw(payload: WithdrawalCreate, planner: PlannerProfile = Depends(get_current_planner),
                           session: AsyncSession = Depends(get_session)):
    withdrawal = await request_withdrawal(
        session, WalletOwner("planner", planner.id), payload.amount, payload.bank_details(),
    )
    return ok("Withdrawal requested", WithdrawalOut.model_validate(withdrawal))


@router.get("/withdrawals")
async def planner_withdrawals(planner: PlannerProfile = Depends(get_current_planner),
                              session: AsyncSession = Depends(get_session)):
    rows = await list_withdrawals(session, owner=WalletOwner("planner", planner.id))
    return ok("Withdrawals", [WithdrawalOut.model_validate(w) for w in rows])
