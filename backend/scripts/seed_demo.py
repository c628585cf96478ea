# backend/scripts/seed_demo.py
"""
Usage:
  # ensure DATABASE_URL is set (or rely on the local default)
  python backend/scripts/seed_demo.py
This script will:
 - create a demo client, two artists with services, and a planner with a funded wallet
 - create the platform commission record if none exists
Running it again only fills in what is missing.
"""
import asyncio
import os
import sys
from decimal import Decimal

BACKEND_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from sqlalchemy import select
from stagebook.db import AsyncSessionLocal, engine
from stagebook.models import Artist, Base, Commission, PlannerProfile, Service, User
from stagebook.services.wallet import WalletOwner, credit

DEMO_ARTISTS = [
    {
        "email": "meera@example.com", "name": "Meera", "categories": "singer,classical", "city": "Chennai",
        "services": [
            {"category": "singer", "unit": "hour", "price_for_user": "2500", "price_for_planner": "2000", "advance": "500"},
            {"category": "classical", "unit": "event", "price_for_user": "30000", "price_for_planner": "25000", "advance": "5000"},
        ],
    },
    {
        "email": "arjun@example.com", "name": "Arjun", "categories": "dj", "city": "Bengaluru",
        "services": [
            {"category": "dj", "unit": "day", "price_for_user": "1000", "price_for_planner": "800", "advance": "200"},
        ],
    },
]
PLANNER_FUNDS = Decimal("50000")


async def _user(session, email, name, role):
    res = await session.execute(select(User).where(User.email == email))
    user = res.scalars().first()
    if user:
        return user, False
    user = User(email=email, display_name=name, role=role)
    session.add(user)
    await session.flush()
    return user, True


async def seed():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    created = []
    async with AsyncSessionLocal() as session:
        async with session.begin():
            _, new = await _user(session, "client@example.com", "Demo Client", "user")
            if new:
                created.append("client@example.com")

            for demo in DEMO_ARTISTS:
                user, new = await _user(session, demo["email"], demo["name"], "artist")
                if not new:
                    continue
                artist = Artist(
                    user_id=user.id, categories=demo["categories"], city=demo["city"], country="India",
                    verification_status="verified",
                )
                session.add(artist)
                await session.flush()
                for svc in demo["services"]:
                    session.add(Service(
                        artist_id=artist.id, category=svc["category"], unit=svc["unit"],
                        price_for_user=Decimal(svc["price_for_user"]),
                        price_for_planner=Decimal(svc["price_for_planner"]),
                        advance=Decimal(svc["advance"]),
                    ))
                created.append(demo["email"])

            planner_user, new = await _user(session, "planner@example.com", "Demo Planner", "planner")
            if new:
                planner = PlannerProfile(user_id=planner_user.id, organization="Demo Events", verification_status="verified")
                session.add(planner)
                await session.flush()
                await credit(
                    session, WalletOwner("planner", planner.id), PLANNER_FUNDS, "adjustment",
                    description="Demo wallet top-up",
                )
                created.append("planner@example.com")

            res = await session.execute(select(Commission).limit(1))
            if not res.scalars().first():
                session.add(Commission(artist_booking_commission=Decimal("10"), ticket_sell_commission=Decimal("5")))
                created.append("commission 10% / 5%")

    print("Seed complete.")
    print("Created:", created or "nothing, demo data already present")


if __name__ == "__main__":
    asyncio.run(seed())
