# backend/stagebook/routes/calendar_blocks.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.auth import get_current_artist
from stagebook.db import get_session
from stagebook.models import Artist
from stagebook.responses import ok
from stagebook.routes.schemas import CalendarBlockOut
from stagebook.services.calendar import create_busy_block, delete_busy_block, list_blocks

router = APIRouter(prefix="/api/calendar-blocks", tags=["calendar"])


class BlockCreate(BaseModel):
    start_at: datetime
    end_at: datetime
    title: Optional[str] = None


@router.get("")
async def my_blocks(artist: Artist = Depends(get_current_artist), session: AsyncSession = Depends(get_session)):
    blocks = await list_blocks(session, artist.id)
    return ok("Calendar blocks", [CalendarBlockOut.model_validate(b) for b in blocks])


@router.get("/artist/{artist_id}")
async def artist_blocks(artist_id: int, session: AsyncSession = Depends(get_session)):
    blocks = await list_blocks(session, artist_id)
    return ok("Calendar blocks", [CalendarBlockOut.model_validate(b) for b in blocks])


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_block(payload: BlockCreate, artist: Artist = Depends(get_current_artist),
                    session: AsyncSession = Depends(get_session)):
    block = await create_busy_block(
        session, artist.id, payload.start_at, payload.end_at, title=payload.title, created_by=artist.user_id,
    )
    return ok("Calendar block created", CalendarBlockOut.model_validate(block))


@router.delete("/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_block(block_id: int, artist: Artist = Depends(get_current_artist),
                       session: AsyncSession = Depends(get_session)):
    await delete_busy_block(session, artist.id, block_id)
    return None
