# backend/stagebook/services/availability.py
"""
Artist availability and service pricing.

Every place that needs to know whether an artist is free goes through
`find_conflicts`, so bookings and calendar blocks are always compared with the
same half-open overlap rule: existing.start < requested.end and
existing.end > requested.start.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.errors import InvalidInterval, NotFound, PricingNotConfigured, ValidationError
from stagebook.models import ACTIVE_BOOKING_STATUSES, Artist, Booking, CalendarBlock, Service

logger = logging.getLogger(__name__)

UNIT_LENGTHS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}


@dataclass(frozen=True)
class Quote:
    units: int
    price_per_unit: Decimal
    total_price: Decimal
    advance: Decimal


@dataclass
class Availability:
    available: bool
    bookings: list = field(default_factory=list)
    blocks: list = field(default_factory=list)

    @property
    def conflicts(self) -> list:
        return [*self.bookings, *self.blocks]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    if start is None or end is None:
        raise InvalidInterval("start and end are required")
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise InvalidInterval()
    return start, end


def billable_units(unit: str, start: datetime, end: datetime) -> int:
    """Number of billing units in [start, end); partial units count as whole ones."""
    if unit == "event":
        return 1
    length = UNIT_LENGTHS.get(unit)
    if length is None:
        raise ValidationError(f"Unknown billing unit: {unit}")
    # ceil division on timedeltas
    return -(-(end - start) // length)


def compute_price(service: Service, start: datetime, end: datetime, role: str = "user") -> Quote:
    start, end = validate_interval(start, end)
    if role == "planner":
        price_per_unit = service.price_for_planner
    elif role == "user":
        price_per_unit = service.price_for_user
    else:
        raise ValidationError(f"Unknown pricing role: {role}")

    if price_per_unit is None or Decimal(price_per_unit) <= 0:
        raise PricingNotConfigured(f"Service {service.id} has no {role} price configured")

    units = billable_units(service.unit, start, end)
    price_per_unit = Decimal(price_per_unit)
    advance = Decimal(service.advance or 0)
    return Quote(
        units=units,
        price_per_unit=price_per_unit,
        total_price=price_per_unit * units,
        advance=advance * units,
    )


async def get_artist_service(session: AsyncSession, artist_id: int, service_id: int) -> tuple[Artist, Service]:
    res = await session.execute(select(Artist).where(Artist.id == artist_id))
    artist = res.scalars().first()
    if not artist:
        raise NotFound("Artist not found")
    res = await session.execute(
        select(Service).where(Service.id == service_id, Service.artist_id == artist_id)
    )
    service = res.scalars().first()
    if not service:
        raise NotFound("Service not found for this artist")
    return artist, service


async def find_conflicts(session: AsyncSession, artist_id: int, start: datetime, end: datetime,
                         exclude_booking_id: Optional[int] = None) -> Availability:
    q = select(Booking).where(
        Booking.artist_id == artist_id,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.start_at < end,
        Booking.end_at > start,
    )
    qb = select(CalendarBlock).where(
        CalendarBlock.artist_id == artist_id,
        CalendarBlock.start_at < end,
        CalendarBlock.end_at > start,
    )
    if exclude_booking_id is not None:
        q = q.where(Booking.id != exclude_booking_id)
        qb = qb.where(
            (CalendarBlock.linked_booking_id.is_(None)) | (CalendarBlock.linked_booking_id != exclude_booking_id)
        )
    bookings = list((await session.execute(q.order_by(Booking.start_at))).scalars().all())
    blocks = list((await session.execute(qb.order_by(CalendarBlock.start_at))).scalars().all())
    if bookings or blocks:
        logger.info(
            "artist %s busy between %s and %s: %d bookings, %d blocks",
            artist_id, start.isoformat(), end.isoformat(), len(bookings), len(blocks),
        )
    return Availability(available=not bookings and not blocks, bookings=bookings, blocks=blocks)


async def check_availability(session: AsyncSession, artist_id: int, service_id: int,
                             start: datetime, end: datetime) -> Availability:
    start, end = validate_interval(start, end)
    await get_artist_service(session, artist_id, service_id)
    return await find_conflicts(session, artist_id, start, end)


def describe_conflicts(availability: Availability) -> list[dict]:
    """Shape conflicts for error payloads and API responses."""
    out = []
    for b in availability.bookings:
        out.append({"kind": "booking", "id": b.id, "start_at": b.start_at, "end_at": b.end_at, "status": b.status})
    for blk in availability.blocks:
        out.append({"kind": "block", "id": blk.id, "start_at": blk.start_at, "end_at": blk.end_at, "type": blk.type})
    return out
