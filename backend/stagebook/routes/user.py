# backend/stagebook/routes/user.py
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import get_current_user
from stagebook.db import end_implicit_transaction, get_session
from stagebook.errors import Conflict, NotFound
from stagebook.models import Artist, Service, Ticket, User
from stagebook.responses import ok
from stagebook.routes.schemas import ArtistOut, EventOut, ServiceOut, TicketOut, TicketTypeOut, UserOut
from stagebook.services.tickets import buy_ticket, list_events, list_ticket_types

router = APIRouter(prefix="/api/user", tags=["user"])


class UserUpdate(BaseModel):
    display_name: Optional[str] = None
    email: Optional[EmailStr] = None


class TicketPurchase(BaseModel):
    ticket_type_id: int
    quantity: int = Field(..., ge=1)
    buyer_name: str = Field(..., min_length=1)
    buyer_phone: str = Field(..., min_length=5)


@router.get("/profile")
async def profile(user: User = Depends(get_current_user)):
    return ok("Profile", UserOut.model_validate(user))


@router.put("/profile")
async def update_profile(payload: UserUpdate, user: User = Depends(get_current_user),
                         session: AsyncSession = Depends(get_session)):
    await end_implicit_transaction(session)
    try:
        async with session.begin():
            res = await session.execute(select(User).where(User.id == user.id).with_for_update())
            row = res.scalars().first()
            if payload.display_name is not None:
                row.display_name = payload.display_name.strip() or None
            if payload.email is not None:
                row.email = payload.email.strip().lower()
            await session.flush()
    except IntegrityError:
        raise Conflict("email already registered")
    return ok("Profile updated", UserOut.model_validate(row))


@router.get("/artists")
async def browse_artists(category: Optional[str] = None, city: Optional[str] = None,
                         session: AsyncSession = Depends(get_session)):
    q = select(Artist).where(Artist.verification_status == "verified")
    if city:
        q = q.where(Artist.city == city)
    res = await session.execute(q.order_by(Artist.id))
    artists = res.scalars().all()
    if category:
        artists = [a for a in artists if category in a.category_list]
    return ok("Artists", [ArtistOut.model_validate(a) for a in artists])


@router.get("/artists/{artist_id}")
async def artist_detail(artist_id: int, session: AsyncSession = Depends(get_session)):
    res = await session.execute(select(Artist).where(Artist.id == artist_id))
    artist = res.scalars().first()
    if not artist:
        raise NotFound("Artist not found")
    res = await session.execute(select(Service).where(Service.artist_id == artist_id).order_by(Service.id))
    return ok("Artist", {
        "artist": ArtistOut.model_validate(artist),
        "services": [ServiceOut.model_validate(s) for s in res.scalars().all()],
    })


@router.get("/events")
async def published_events(session: AsyncSession = Depends(get_session)):
    events = await list_events(session, published_only=True)
    return ok("Events", [EventOut.model_validate(e) for e in events])


@router.get("/events/{event_id}/ticket-types")
async def event_ticket_types(event_id: int, session: AsyncSession = Depends(get_session)):
    rows = await list_ticket_types(session, event_id)
    return ok("Ticket types", [TicketTypeOut.model_validate(t) for t in rows])


@router.post("/tickets", status_code=status.HTTP_201_CREATED)
async def purchase_ticket(payload: TicketPurchase, user: User = Depends(get_current_user),
                          session: AsyncSession = Depends(get_session)):
    ticket = await buy_ticket(
        session, user.id, payload.ticket_type_id, payload.quantity, payload.buyer_name, payload.buyer_phone,
    )
    return ok("Ticket issued", TicketOut.model_validate(ticket))


@router.get("/tickets")
async def my_tickets(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    res = await session.execute(select(Ticket).where(Ticket.user_id == user.id).order_by(Ticket.id.desc()))
    return ok("Tickets", [TicketOut.model_validate(t) for t in res.scalars().all()])
