# backend/stagebook/services/tickets.py
"""
Events, ticket types and issued tickets.

`sold` and `scanned_persons` only move through guarded UPDATE statements
(compare-and-swap in the WHERE clause), so they can never pass their caps even
when purchases or scans race.
"""
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import end_implicit_transaction
from stagebook.errors import Conflict, Forbidden, NotFound, ValidationError
from stagebook.models import Event, PlannerProfile, Ticket, TicketType
from stagebook.services.availability import as_utc, validate_interval
from stagebook.services.wallet import WalletOwner, commission_split, credit, latest_commission

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def create_event(session: AsyncSession, planner: PlannerProfile, title: str, start: datetime,
                       end: datetime, venue: Optional[str] = None, published: bool = True) -> Event:
    start, end = validate_interval(start, end)
    await end_implicit_transaction(session)
    async with session.begin():
        event = Event(planner_id=planner.id, title=title, venue=venue, start_at=start, end_at=end,
                      published=published)
        session.add(event)
        await session.flush()
        return event


async def _owned_event(session: AsyncSession, planner: PlannerProfile, event_id: int) -> Event:
    res = await session.execute(select(Event).where(Event.id == event_id))
    event = res.scalars().first()
    if not event:
        raise NotFound("Event not found")
    if event.planner_id != planner.id:
        raise Forbidden("You don't own this event")
    return event


async def list_events(session: AsyncSession, planner_id: Optional[int] = None,
                      published_only: bool = False) -> list[Event]:
    q = select(Event)
    if planner_id is not None:
        q = q.where(Event.planner_id == planner_id)
    if published_only:
        q = q.where(Event.published.is_(True))
    res = await session.execute(q.order_by(Event.start_at))
    return list(res.scalars().all())


async def create_ticket_type(session: AsyncSession, planner: PlannerProfile, event_id: int, title: str,
                             price, quantity: int, sales_start: Optional[datetime] = None,
                             sales_end: Optional[datetime] = None) -> TicketType:
    if Decimal(str(price)) < 0:
        raise ValidationError("price cannot be negative")
    if quantity < 0:
        raise ValidationError("quantity cannot be negative")
    if sales_start and sales_end:
        validate_interval(sales_start, sales_end)
    await _owned_event(session, planner, event_id)
    await end_implicit_transaction(session)
    async with session.begin():
        ticket_type = TicketType(
            event_id=event_id, title=title, price=Decimal(str(price)), quantity=quantity, sold=0,
            sales_start=as_utc(sales_start) if sales_start else None,
            sales_end=as_utc(sales_end) if sales_end else None,
        )
        session.add(ticket_type)
        await session.flush()
        return ticket_type


async def _owned_ticket_type(session: AsyncSession, planner: PlannerProfile, ticket_type_id: int) -> TicketType:
    res = await session.execute(
        select(TicketType).where(TicketType.id == ticket_type_id).execution_options(populate_existing=True)
    )
    ticket_type = res.scalars().first()
    if not ticket_type:
        raise NotFound("Ticket type not found")
    await _owned_event(session, planner, ticket_type.event_id)
    return ticket_type


async def update_ticket_type(session: AsyncSession, planner: PlannerProfile, ticket_type_id: int,
                             title: Optional[str] = None, price=None, quantity: Optional[int] = None,
                             sales_start: Optional[datetime] = None,
                             sales_end: Optional[datetime] = None) -> TicketType:
    """
    Change the terms of a ticket type. Only the given fields change and `sold`
    is never written here. The quantity cannot drop below what is already sold,
    checked in the same UPDATE so a concurrent purchase cannot slip between.
    """
    values = {}
    if title is not None:
        if not title.strip():
            raise ValidationError("title cannot be empty")
        values["title"] = title.strip()
    if price is not None:
        if Decimal(str(price)) < 0:
            raise ValidationError("price cannot be negative")
        values["price"] = Decimal(str(price))
    if quantity is not None:
        if quantity < 0:
            raise ValidationError("quantity cannot be negative")
        values["quantity"] = quantity

    ticket_type = await _owned_ticket_type(session, planner, ticket_type_id)
    window_start = sales_start if sales_start is not None else ticket_type.sales_start
    window_end = sales_end if sales_end is not None else ticket_type.sales_end
    if window_start and window_end:
        validate_interval(window_start, window_end)
    if sales_start is not None:
        values["sales_start"] = as_utc(sales_start)
    if sales_end is not None:
        values["sales_end"] = as_utc(sales_end)
    if not values:
        return ticket_type

    await end_implicit_transaction(session)
    async with session.begin():
        q = update(TicketType).where(TicketType.id == ticket_type_id)
        if quantity is not None:
            q = q.where(TicketType.sold <= quantity)
        changed = await session.execute(q.values(**values).execution_options(synchronize_session=False))
        res = await session.execute(
            select(TicketType).where(TicketType.id == ticket_type_id).execution_options(populate_existing=True)
        )
        ticket_type = res.scalars().first()
        if changed.rowcount != 1:
            raise Conflict(f"quantity cannot be lower than the {ticket_type.sold} tickets already sold")
        logger.info("ticket type %s updated (%s)", ticket_type.id, ", ".join(sorted(values)))
        return ticket_type


async def delete_ticket_type(session: AsyncSession, planner: PlannerProfile, ticket_type_id: int) -> None:
    """Only unsold ticket types can go; issued tickets keep pointing at theirs."""
    await _owned_ticket_type(session, planner, ticket_type_id)
    await end_implicit_transaction(session)
    async with session.begin():
        removed = await session.execute(
            delete(TicketType).where(TicketType.id == ticket_type_id, TicketType.sold == 0)
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount != 1:
            raise Conflict("Tickets of this type were already sold, it cannot be deleted")
    logger.info("ticket type %s deleted", ticket_type_id)


async def list_ticket_types(session: AsyncSession, event_id: int) -> list[TicketType]:
    res = await session.execute(
        select(TicketType).where(TicketType.event_id == event_id).order_by(TicketType.created_at.desc())
    )
    return list(res.scalars().all())


def _check_sales_window(ticket_type: TicketType, now: datetime) -> None:
    if ticket_type.sales_start and now < as_utc(ticket_type.sales_start):
        raise ValidationError("Ticket sales have not started yet")
    if ticket_type.sales_end and now > as_utc(ticket_type.sales_end):
        raise ValidationError("Ticket sales have ended")


async def buy_ticket(session: AsyncSession, user_id: Optional[int], ticket_type_id: int, quantity: int,
                     buyer_name: str, buyer_phone: str) -> Ticket:
    if quantity is None or quantity <= 0:
        raise ValidationError("Invalid quantity")
    if not buyer_name or not buyer_phone:
        raise ValidationError("Buyer name and phone are required")

    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(select(TicketType).where(TicketType.id == ticket_type_id))
        ticket_type = res.scalars().first()
        if not ticket_type:
            raise NotFound("Ticket type not found")
        res = await session.execute(select(Event).where(Event.id == ticket_type.event_id))
        event = res.scalars().first()
        if not event:
            raise NotFound("Event associated with ticket not found")
        now = _now()
        if not event.published or as_utc(event.end_at) < now:
            raise ValidationError("This event is no longer on sale")
        _check_sales_window(ticket_type, now)

        claimed = await session.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id, TicketType.sold + quantity <= TicketType.quantity)
            .values(sold=TicketType.sold + quantity)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise Conflict("Not enough tickets available")

        total = Decimal(ticket_type.price) * quantity
        ticket = Ticket(
            ticket_type_id=ticket_type.id, event_id=event.id, user_id=user_id,
            buyer_name=buyer_name, buyer_phone=buyer_phone, persons=quantity,
            scanned_persons=0, scanned=False, is_valid=True, issued_at=now,
        )
        session.add(ticket)
        await session.flush()
        ticket.qr_payload = json.dumps({
            "ticket_id": ticket.id,
            "event_id": event.id,
            "buyer_name": buyer_name,
            "persons": quantity,
            "issued_at": int(now.timestamp() * 1000),
        })

        if total > 0:
            commission = await latest_commission(session)
            split = commission_split(total, total, commission.ticket_sell_commission if commission else 0)
            if split.net_credit > 0:
                await credit(
                    session, WalletOwner("planner", event.planner_id), split.net_credit, "booking",
                    reference_id=str(ticket.id),
                    description=f"Ticket sale for {event.title} ({quantity} qty)",
                )
        await session.flush()
        logger.info("ticket %s issued for event %s (%s persons, %s)", ticket.id, event.id, quantity, total)
        return ticket


async def get_ticket(session: AsyncSession, ticket_id: int) -> Ticket:
    # counters move through bulk UPDATEs, so never trust the identity map here
    res = await session.execute(
        select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    )
    ticket = res.scalars().first()
    if not ticket:
        raise NotFound("Ticket not found")
    return ticket


async def scan_ticket(session: AsyncSession, planner: PlannerProfile, ticket_id: int, persons: int = 1) -> Ticket:
    if persons is None or persons <= 0:
        raise ValidationError("persons must be at least 1")
    ticket = await get_ticket(session, ticket_id)
    await _owned_event(session, planner, ticket.event_id)
    if not ticket.is_valid:
        raise ValidationError("Ticket is no longer valid")

    await end_implicit_transaction(session)
    async with session.begin():
        admitted = await session.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id, Ticket.is_valid.is_(True),
                   Ticket.scanned_persons + persons <= Ticket.persons)
            .values(scanned_persons=Ticket.scanned_persons + persons, scanned_at=_now())
            .execution_options(synchronize_session=False)
        )
        if admitted.rowcount != 1:
            raise Conflict("Ticket has no remaining admissions for that many persons")
        res = await session.execute(
            select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
        )
        ticket = res.scalars().first()
        ticket.scanned = ticket.scanned_persons >= ticket.persons
        await session.flush()
        logger.info("ticket %s admitted %s (%s/%s)", ticket.id, persons, ticket.scanned_persons, ticket.persons)
        return ticket


async def expire_past_events(session: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Unpublish finished events and invalidate their tickets. Safe to rerun."""
    now = as_utc(now) if now else _now()
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(
            select(Event).where(Event.end_at < now, Event.published.is_(True)).with_for_update()
        )
        expired = list(res.scalars().all())
        invalidated = 0
        for event in expired:
            event.published = False
            result = await session.execute(
                update(Ticket).where(Ticket.event_id == event.id, Ticket.is_valid.is_(True))
                .values(is_valid=False)
                .execution_options(synchronize_session=False)
            )
            invalidated += result.rowcount or 0
            logger.info("event %s expired, %s tickets invalidated", event.id, result.rowcount)
        return {"events": len(expired), "tickets": invalidated}
