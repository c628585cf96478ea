# backend/stagebook/routes/services.py
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import get_session
from stagebook.errors import NotFound
from stagebook.models import Service
from stagebook.responses import ok
from stagebook.routes.schemas import BookingOut, CalendarBlockOut, ServiceOut
from stagebook.services.availability import check_availability, compute_price, validate_interval

router = APIRouter(prefix="/api/services", tags=["services"])


async def _load_service(session: AsyncSession, service_id: int) -> Service:
    res = await session.execute(select(Service).where(Service.id == service_id))
    service = res.scalars().first()
    if not service:
        raise NotFound("Service not found")
    return service


@router.get("")
async def list_services(artist_id: Optional[int] = None, category: Optional[str] = None,
                        session: AsyncSession = Depends(get_session)):
    q = select(Service)
    if artist_id is not None:
        q = q.where(Service.artist_id == artist_id)
    if category:
        q = q.where(Service.category == category)
    res = await session.execute(q.order_by(Service.id))
    return ok("Services", [ServiceOut.model_validate(s) for s in res.scalars().all()])


@router.get("/{service_id}")
async def get_service(service_id: int, session: AsyncSession = Depends(get_session)):
    service = await _load_service(session, service_id)
    return ok("Service", ServiceOut.model_validate(service))


@router.get("/{service_id}/availability")
async def service_availability(service_id: int, start: datetime = Query(...), end: datetime = Query(...),
                               session: AsyncSession = Depends(get_session)):
    service = await _load_service(session, service_id)
    availability = await check_availability(session, service.artist_id, service.id, start, end)
    return ok("Availability", {
        "available": availability.available,
        "bookings": [BookingOut.model_validate(b) for b in availability.bookings],
        "blocks": [CalendarBlockOut.model_validate(b) for b in availability.blocks],
    })


@router.get("/{service_id}/quote")
async def service_quote(service_id: int, start: datetime = Query(...), end: datetime = Query(...),
                        role: Literal["user", "planner"] = "user",
                        session: AsyncSession = Depends(get_session)):
    start, end = validate_interval(start, end)
    service = await _load_service(session, service_id)
    quote = compute_price(service, start, end, role=role)
    return ok("Quote", {
        "unit": service.unit,
        "units": quote.units,
        "price_per_unit": float(quote.price_per_unit),
        "total_price": float(quote.total_price),
        "advance": float(quote.advance),
    })
