# backend/stagebook/locks.py
"""
In-process mutual exclusion for "check, then write" sections.

`artist_lock` wraps "check conflicts, then insert" for one artist's calendar.
`wallet_lock` wraps "check available balance, then debit or reserve" for one
wallet. Inside one worker the asyncio lock queues competing requests. Across
workers the row lock (SELECT ... FOR UPDATE on PostgreSQL) does the same job,
and the bookings exclusion constraint rejects anything that slips past both.

When both are needed the artist lock is taken first.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagebook.errors import NotFound
from stagebook.models import Artist

_artist_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()
_wallet_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(registry: weakref.WeakValueDictionary, key: Hashable) -> asyncio.Lock:
    lock = registry.get(key)
    if lock is None:
        lock = asyncio.Lock()
        registry[key] = lock
    return lock


@asynccontextmanager
async def artist_lock(artist_id: int) -> AsyncIterator[None]:
    lock = _lock_for(_artist_locks, artist_id)
    async with lock:
        yield


@asynccontextmanager
async def wallet_lock(owner) -> AsyncIterator[None]:
    """`owner` is a WalletOwner; its "kind:ref" form is the key."""
    lock = _lock_for(_wallet_locks, str(owner))
    async with lock:
        yield


async def lock_artist_row(session: AsyncSession, artist_id: int) -> Artist:
    res = await session.execute(
        select(Artist).where(Artist.id == artist_id).with_for_update().execution_options(populate_existing=True)
    )
    artist = res.scalars().first()
    if not artist:
        raise NotFound("Artist not found")
    return artist
