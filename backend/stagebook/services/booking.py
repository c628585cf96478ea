# booking.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import end_implicit_transaction
from stagebook.errors import AppError, Conflict, GatewayUnavailable, InvalidStatus, NotFound, ValidationError
from stagebook.locks import artist_lock, lock_artist_row, wallet_lock
from stagebook.models import BOOKING_STATUSES, Booking, CalendarBlock, PlannerProfile
from stagebook.payments import PaymentGateway, from_minor_units
from stagebook.services.availability import (
    compute_price, describe_conflicts, find_conflicts, get_artist_service, validate_interval,
)
from stagebook.services.wallet import WalletOwner, credit_booking_payout, debit

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}
SETTLED_PAYMENT_STATUSES = ("advance", "paid")


async def _ensure_free(session: AsyncSession, artist_id: int, start: datetime, end: datetime) -> None:
    availability = await find_conflicts(session, artist_id, start, end)
    if not availability.available:
        raise Conflict(
            "Artist is not available for the requested time slot",
            data=describe_conflicts(availability),
        )


async def _insert_booking(session: AsyncSession, booking: Booking) -> Booking:
    session.add(booking)
    try:
        await session.flush()
    except IntegrityError:
        # exclusion constraint on PostgreSQL: another worker won the slot
        raise Conflict("Artist is not available for the requested time slot")
    return booking


def _block_for(booking: Booking, block_type: str, created_by: Optional[int] = None) -> CalendarBlock:
    label = "Offline booking" if block_type == "offlineBooking" else "Booking"
    return CalendarBlock(
        artist_id=booking.artist_id,
        start_at=booking.start_at,
        end_at=booking.end_at,
        type=block_type,
        title=f"{label} #{booking.id}",
        linked_booking_id=booking.id,
        created_by=created_by,
    )


async def create_online_booking(session: AsyncSession, gateway: PaymentGateway, client_id: int,
                                artist_id: int, service_id: int, start: datetime, end: datetime,
                                role: str = "user", event_id: Optional[int] = None,
                                pay_full: bool = False, notes: Optional[str] = None):
    """
    Reserve the slot as a pending booking and open a gateway order for it.

    The booking is flushed first, then the order is requested inside the same
    transaction, so a gateway failure rolls the booking back with it.
    Returns (booking, order).
    """
    start, end = validate_interval(start, end)
    if role not in ("user", "planner"):
        raise ValidationError(f"Unknown booking role: {role}")

    await end_implicit_transaction(session)
    async with artist_lock(artist_id):
        async with session.begin():
            await lock_artist_row(session, artist_id)
            _, service = await get_artist_service(session, artist_id, service_id)
            await _ensure_free(session, artist_id, start, end)
            quote = compute_price(service, start, end, role=role)

            amount_due = quote.total_price
            if not pay_full and quote.advance > 0:
                amount_due = min(quote.advance, quote.total_price)

            booking = await _insert_booking(session, Booking(
                client_id=client_id, artist_id=artist_id, service_id=service.id, event_id=event_id,
                source=role, start_at=start, end_at=end,
                total_price=quote.total_price, advance_amount=quote.advance, paid_amount=Decimal("0"),
                status="pending", payment_status="unpaid", notes=notes,
            ))
            try:
                order = await gateway.create_order(
                    amount_due, receipt=f"booking_{booking.id}",
                    metadata={"booking_id": str(booking.id), "artist_id": str(artist_id)},
                )
            except AppError:
                raise
            except Exception as exc:
                logger.exception("gateway order creation failed for booking %s", booking.id)
                raise GatewayUnavailable(f"Could not create payment order: {exc}")
            booking.gateway_order_id = order["id"]
            await session.flush()
            logger.info(
                "booking %s pending for artist %s (%s units, total %s, due now %s, order %s)",
                booking.id, artist_id, quote.units, quote.total_price, amount_due, order["id"],
            )
            return booking, order


async def create_wallet_booking(session: AsyncSession, planner: PlannerProfile, artist_id: int,
                                service_id: int, start: datetime, end: datetime,
                                event_id: Optional[int] = None, notes: Optional[str] = None) -> Booking:
    """Planner pays the full planner price from their wallet; confirmed on success."""
    start, end = validate_interval(start, end)
    wallet = WalletOwner("planner", planner.id)
    await end_implicit_transaction(session)
    async with artist_lock(artist_id), wallet_lock(wallet):
        async with session.begin():
            await lock_artist_row(session, artist_id)
            _, service = await get_artist_service(session, artist_id, service_id)
            await _ensure_free(session, artist_id, start, end)
            quote = compute_price(service, start, end, role="planner")

            booking = await _insert_booking(session, Booking(
                client_id=planner.user_id, artist_id=artist_id, service_id=service.id, event_id=event_id,
                source="planner", start_at=start, end_at=end,
                total_price=quote.total_price, advance_amount=quote.advance, paid_amount=quote.total_price,
                status="confirmed", payment_status="paid", notes=notes,
            ))
            await debit(
                session, wallet, quote.total_price, "booking",
                reference_id=str(booking.id), description=f"Payment for booking #{booking.id}",
            )
            session.add(_block_for(booking, "onlineBooking", created_by=planner.user_id))
            await credit_booking_payout(session, artist_id, booking.id, booking.total_price, booking.paid_amount)
            await session.flush()
            logger.info("booking %s confirmed from planner %s wallet (%s)", booking.id, planner.id, quote.total_price)
            return booking


async def create_offline_booking(session: AsyncSession, artist_id: int, service_id: int,
                                 start: datetime, end: datetime, total_price=None,
                                 notes: Optional[str] = None, created_by: Optional[int] = None) -> Booking:
    """An artist records a booking taken outside the platform; no payment is collected."""
    start, end = validate_interval(start, end)
    if total_price is not None and Decimal(str(total_price)) < 0:
        raise ValidationError("total_price cannot be negative")

    await end_implicit_transaction(session)
    async with artist_lock(artist_id):
        async with session.begin():
            await lock_artist_row(session, artist_id)
            _, service = await get_artist_service(session, artist_id, service_id)
            await _ensure_free(session, artist_id, start, end)
            if total_price is None:
                total_price = compute_price(service, start, end, role="user").total_price

            booking = await _insert_booking(session, Booking(
                client_id=None, artist_id=artist_id, service_id=service.id,
                source="offline", start_at=start, end_at=end,
                total_price=Decimal(str(total_price)), paid_amount=Decimal("0"), advance_amount=Decimal("0"),
                status="confirmed", payment_status="unpaid", notes=notes,
            ))
            session.add(_block_for(booking, "offlineBooking", created_by=created_by))
            await session.flush()
            logger.info("offline booking %s recorded for artist %s", booking.id, artist_id)
            return booking


async def confirm_gateway_payment(session: AsyncSession, order_id: str, amount_received,
                                  payment_id: Optional[str] = None):
    """
    Apply a verified gateway payment to its booking. Replays of an order that
    was already applied return the booking untouched. A payment for a booking
    that was cancelled meanwhile is recorded with payment_status "refunded" and
    never credited. Returns (booking, applied).
    """
    res = await session.execute(select(Booking).where(Booking.gateway_order_id == order_id))
    booking = res.scalars().first()
    if not booking:
        raise NotFound("No booking found for this payment order")
    artist_id = booking.artist_id

    await end_implicit_transaction(session)
    async with artist_lock(artist_id):
        async with session.begin():
            res = await session.execute(
                select(Booking).where(Booking.gateway_order_id == order_id)
                .with_for_update().execution_options(populate_existing=True)
            )
            booking = res.scalars().first()
            if booking.payment_status in SETTLED_PAYMENT_STATUSES:
                logger.info("order %s already applied to booking %s, skipping", order_id, booking.id)
                return booking, False
            if booking.status == "cancelled":
                if booking.payment_status != "refunded":
                    # the slot is gone; keep the money traceable until it is refunded by hand
                    booking.paid_amount = Decimal(str(amount_received))
                    booking.gateway_payment_id = payment_id
                    booking.payment_status = "refunded"
                    await session.flush()
                logger.warning(
                    "payment %s for order %s arrived after booking %s was cancelled, marked for refund",
                    payment_id, order_id, booking.id,
                )
                return booking, False

            paid = Decimal(str(amount_received))
            booking.paid_amount = paid
            booking.gateway_payment_id = payment_id
            booking.payment_status = "paid" if paid >= booking.total_price else "advance"
            booking.status = "confirmed"
            session.add(_block_for(booking, "onlineBooking", created_by=booking.client_id))
            await credit_booking_payout(session, booking.artist_id, booking.id, booking.total_price, paid)
            await session.flush()
            logger.info(
                "booking %s confirmed by order %s (%s, paid %s of %s)",
                booking.id, order_id, booking.payment_status, paid, booking.total_price,
            )
            return booking, True


async def handle_gateway_event(session: AsyncSession, event: dict) -> dict:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    if event_type == "payment_intent.succeeded":
        order_id = obj.get("id")
        if not order_id:
            raise ValidationError("Gateway event has no payment intent id")
        amount = obj.get("amount_received") or obj.get("amount") or 0
        booking, applied = await confirm_gateway_payment(
            session, order_id, from_minor_units(amount), payment_id=obj.get("latest_charge"),
        )
        return {"booking_id": booking.id, "applied": applied, "status": booking.status,
                "payment_status": booking.payment_status}
    if event_type == "payment_intent.canceled":
        res = await session.execute(select(Booking).where(Booking.gateway_order_id == obj.get("id")))
        booking = res.scalars().first()
        if booking and booking.status == "pending" and booking.payment_status == "unpaid":
            booking = await update_booking_status(session, booking.id, "cancelled")
            return {"booking_id": booking.id, "applied": True, "status": booking.status}
        return {"applied": False}
    logger.debug("ignoring gateway event %s", event_type)
    return {"applied": False}


async def update_booking_status(session: AsyncSession, booking_id: int, new_status: str) -> Booking:
    if new_status not in BOOKING_STATUSES:
        raise InvalidStatus(f"Invalid status '{new_status}'. Allowed: {', '.join(BOOKING_STATUSES)}")

    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(
            select(Booking).where(Booking.id == booking_id)
            .with_for_update().execution_options(populate_existing=True)
        )
        booking = res.scalars().first()
        if not booking:
            raise NotFound("Booking not found")
        if booking.status == new_status:
            return booking
        if new_status not in ALLOWED_TRANSITIONS[booking.status]:
            raise InvalidStatus(f"Cannot move booking from {booking.status} to {new_status}")

        booking.status = new_status
        if new_status == "cancelled":
            # frees the slot for other bookings
            await session.execute(delete(CalendarBlock).where(CalendarBlock.linked_booking_id == booking.id))
        await session.flush()
        logger.info("booking %s is now %s", booking.id, new_status)
        return booking


async def expire_stale_bookings(session: AsyncSession, older_than: datetime,
                                gateway: Optional[PaymentGateway] = None) -> int:
    """
    Cancel gateway bookings whose order was never paid.

    The gateway order is cancelled first. A booking whose order cannot be
    cancelled (the customer may be paying right now) stays pending for the
    next sweep, so a late success webhook still finds it.
    """
    res = await session.execute(
        select(Booking.id, Booking.artist_id, Booking.gateway_order_id).where(
            Booking.status == "pending",
            Booking.payment_status == "unpaid",
            Booking.gateway_order_id.is_not(None),
            Booking.created_at < older_than,
        ).order_by(Booking.id)
    )
    candidates = res.all()
    # no transaction stays open across the gateway calls
    await end_implicit_transaction(session)

    expired = 0
    for booking_id, artist_id, order_id in candidates:
        if gateway is not None:
            try:
                await gateway.cancel_order(order_id)
            except Exception:
                logger.exception("could not cancel gateway order %s, booking %s stays pending", order_id, booking_id)
                continue

        async with artist_lock(artist_id):
            async with session.begin():
                res = await session.execute(
                    select(Booking).where(Booking.id == booking_id)
                    .with_for_update().execution_options(populate_existing=True)
                )
                booking = res.scalars().first()
                # paid while the order was being cancelled
                if booking.status != "pending" or booking.payment_status != "unpaid":
                    continue
                booking.status = "cancelled"
                await session.flush()
        expired += 1
        logger.info("cancelled unpaid booking %s (order %s)", booking_id, order_id)
    return expired


async def get_booking(session: AsyncSession, booking_id: int) -> Booking:
    res = await session.execute(select(Booking).where(Booking.id == booking_id))
    booking = res.scalars().first()
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def list_bookings(session: AsyncSession, client_id: Optional[int] = None, artist_id: Optional[int] = None,
                        status: Optional[str] = None) -> list[Booking]:
    q = select(Booking)
    if client_id is not None:
        q = q.where(Booking.client_id == client_id)
    if artist_id is not None:
        q = q.where(Booking.artist_id == artist_id)
    if status:
        q = q.where(Booking.status == status)
    res = await session.execute(q.order_by(Booking.start_at.desc(), Booking.id.desc()))
    return list(res.scalars().all())