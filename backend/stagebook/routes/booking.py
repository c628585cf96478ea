# backend/stagebook/routes/booking.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import get_current_user
from stagebook.db import get_session
from stagebook.errors import NotFound
from stagebook.models import Artist, User
from stagebook.payments import PaymentGateway, get_gateway
from stagebook.responses import ok
from stagebook.routes.schemas import BookingOut
from stagebook.services.booking import (
    create_online_booking, get_booking, handle_gateway_event, list_bookings, update_booking_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])
# Stripe calls this one directly, so it sits outside the API-key gate.
webhook_router = APIRouter(prefix="/api/bookings", tags=["bookings"])


class BookingRequest(BaseModel):
    artist_id: int
    service_id: int
    start_at: datetime
    end_at: datetime
    event_id: Optional[int] = None
    pay_full: bool = False
    notes: Optional[str] = None


async def _visible_booking(session: AsyncSession, user: User, booking_id: int):
    booking = await get_booking(session, booking_id)
    if booking.client_id == user.id:
        return booking
    res = await session.execute(select(Artist.id).where(Artist.user_id == user.id))
    if res.scalar() == booking.artist_id:
        return booking
    # other people's bookings are reported as missing
    raise NotFound("Booking not found")


@router.post("", status_code=status.HTTP_201_CREATED)
async def post_booking(req: BookingRequest, user: User = Depends(get_current_user),
                       session: AsyncSession = Depends(get_session),
                       gateway: PaymentGateway = Depends(get_gateway)):
    booking, order = await create_online_booking(
        session=session,
        gateway=gateway,
        client_id=user.id,
        artist_id=req.artist_id,
        service_id=req.service_id,
        start=req.start_at,
        end=req.end_at,
        role="planner" if user.role == "planner" else "user",
        event_id=req.event_id,
        pay_full=req.pay_full,
        notes=req.notes,
    )
    return ok("Booking created, complete the payment to confirm it", {
        "booking": BookingOut.model_validate(booking),
        "order": {
            "id": order["id"],
            "amount": float(order["amount"]),
            "currency": order["currency"],
            "client_secret": order.get("client_secret"),
        },
    })


@router.get("")
async def my_bookings(status_filter: Optional[str] = Query(None, alias="status"), user: User = Depends(get_current_user),
                      session: AsyncSession = Depends(get_session)):
    bookings = await list_bookings(session, client_id=user.id, status=status_filter)
    return ok("Bookings", [BookingOut.model_validate(b) for b in bookings])


@router.get("/{booking_id}")
async def booking_detail(booking_id: int, user: User = Depends(get_current_user),
                         session: AsyncSession = Depends(get_session)):
    booking = await _visible_booking(session, user, booking_id)
    return ok("Booking", BookingOut.model_validate(booking))


@router.post("/{booking_id}/cancel")
async def cancel_booking(booking_id: int, user: User = Depends(get_current_user),
                         session: AsyncSession = Depends(get_session),
                         gateway: PaymentGateway = Depends(get_gateway)):
    booking = await get_booking(session, booking_id)
    if booking.client_id != user.id:
        raise NotFound("Booking not found")
    open_order = None
    if booking.status == "pending" and booking.payment_status == "unpaid":
        open_order = booking.gateway_order_id
    booking = await update_booking_status(session, booking_id, "cancelled")
    if open_order:
        try:
            await gateway.cancel_order(open_order)
        except Exception:
            # a payment that still lands is recorded on the cancelled booking for refund
            logger.exception("could not cancel gateway order %s for booking %s", open_order, booking_id)
    return ok("Booking cancelled", BookingOut.model_validate(booking))


@webhook_router.post("/webhook")
async def gateway_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                          session: AsyncSession = Depends(get_session),
                          gateway: PaymentGateway = Depends(get_gateway)):
    payload = await request.body()
    event = gateway.verify_event(payload, stripe_signature)
    result = await handle_gateway_event(session, event)
    logger.info("gateway event %s handled: %s", event.get("type"), result)
    return ok("Event processed", result)
