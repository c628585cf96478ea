# backend/stagebook/services/calendar.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.db import end_implicit_transaction
from stagebook.errors import Conflict, NotFound
from stagebook.locks import artist_lock, lock_artist_row
from stagebook.models import CalendarBlock
from stagebook.services.availability import describe_conflicts, find_conflicts, validate_interval

logger = logging.getLogger(__name__)


async def create_busy_block(session: AsyncSession, artist_id: int, start: datetime, end: datetime,
                            title: Optional[str] = None, created_by: Optional[int] = None) -> CalendarBlock:
    start, end = validate_interval(start, end)
    await end_implicit_transaction(session)
    async with artist_lock(artist_id):
        async with session.begin():
            await lock_artist_row(session, artist_id)
            availability = await find_conflicts(session, artist_id, start, end)
            if not availability.available:
                raise Conflict("The requested interval overlaps existing bookings or blocks",
                               data=describe_conflicts(availability))
            block = CalendarBlock(
                artist_id=artist_id, start_at=start, end_at=end, type="busy",
                title=title, created_by=created_by,
            )
            session.add(block)
            await session.flush()
            logger.info("artist %s blocked %s - %s", artist_id, start.isoformat(), end.isoformat())
            return block


async def list_blocks(session: AsyncSession, artist_id: int) -> list[CalendarBlock]:
    res = await session.execute(
        select(CalendarBlock).where(CalendarBlock.artist_id == artist_id).order_by(CalendarBlock.start_at)
    )
    return list(res.scalars().all())


async def delete_busy_block(session: AsyncSession, artist_id: int, block_id: int) -> None:
    await end_implicit_transaction(session)
    async with session.begin():
        res = await session.execute(
            select(CalendarBlock).where(CalendarBlock.id == block_id, CalendarBlock.artist_id == artist_id)
        )
        block = res.scalars().first()
        if not block:
            raise NotFound("Calendar block not found")
        if block.type != "busy" or block.linked_booking_id is not None:
            raise Conflict("Booking blocks are released by cancelling the booking")
        await session.delete(block)
