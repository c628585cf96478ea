# backend/stagebook/jobs.py
"""
Hourly housekeeping run inside the API process.

Each step opens its own session so one failing step does not poison the others,
and every step is safe to repeat.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from stagebook import config
from stagebook.db import AsyncSessionLocal
from stagebook.payments import PaymentGateway, get_gateway
from stagebook.services.booking import expire_stale_bookings
from stagebook.services.tickets import expire_past_events
from stagebook.services.wallet import owners_with_drift

logger = logging.getLogger(__name__)


async def run_sweep(session_factory=AsyncSessionLocal, gateway: Optional[PaymentGateway] = None) -> dict:
    now = datetime.now(timezone.utc)
    summary = {}

    try:
        async with session_factory() as session:
            summary["events"] = await expire_past_events(session, now=now)
    except Exception:
        logger.exception("sweep: expiring past events failed")

    try:
        cutoff = now - timedelta(minutes=config.PENDING_BOOKING_TTL_MINUTES)
        async with session_factory() as session:
            summary["stale_bookings"] = await expire_stale_bookings(session, cutoff, gateway=gateway)
    except Exception:
        logger.exception("sweep: expiring stale bookings failed")

    try:
        async with session_factory() as session:
            drifted = await owners_with_drift(session)
        for entry in drifted:
            logger.warning("wallet drift on %s: cached %s, ledger %s", entry["owner"], entry["cached"], entry["ledger"])
        summary["wallet_drift"] = len(drifted)
    except Exception:
        logger.exception("sweep: wallet drift check failed")

    logger.info("sweep finished: %s", summary)
    return summary


async def sweep_forever(interval_seconds: Optional[int] = None) -> None:
    interval = interval_seconds or config.SWEEP_INTERVAL_SECONDS
    gateway = get_gateway() if config.STRIPE_SECRET_KEY else None
    while True:
        await run_sweep(gateway=gateway)
        await asyncio.sleep(interval)
