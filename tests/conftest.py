import json
import os
import tempfile
from decimal import Decimal

# settings are read at import time, so they must be in place before stagebook is imported
_TMP_DIR = tempfile.mkdtemp(prefix="stagebook-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'stagebook_test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_KEY"] = "test-api-key"
os.environ["ADMIN_KEY"] = "test-admin-key"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["SWEEP_ENABLED"] = "0"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"

import httpx
import pytest

from stagebook import redis_tools
from stagebook.auth import create_access_token
from stagebook.db import AsyncSessionLocal, end_implicit_transaction, engine
from stagebook.errors import PaymentVerificationFailed
from stagebook.main import app
from stagebook.models import Artist, Base, Commission, PlannerProfile, Service, User
from stagebook.payments import get_gateway
from stagebook.services.wallet import WalletOwner, credit

API_HEADERS = {"X-API-Key": "test-api-key"}
ADMIN_HEADERS = {**API_HEADERS, "X-Admin-Key": "test-admin-key"}


class FakeGateway:
    def __init__(self) -> None:
        self.orders: dict[str, dict] = {}
        self.cancelled: list[str] = []
        self.fail = False
        self.cancel_fails = False
        self._counter = 0

    async def create_order(self, amount, receipt, metadata=None):
        if self.fail:
            raise RuntimeError("gateway down")
        self._counter += 1
        order = {
            "id": f"pi_test_{self._counter}",
            "amount": Decimal(amount),
            "currency": "inr",
            "client_secret": f"pi_test_{self._counter}_secret",
            "receipt": receipt,
        }
        self.orders[order["id"]] = order
        return order

    async def cancel_order(self, order_id):
        if self.cancel_fails:
            raise RuntimeError("intent already succeeded")
        self.cancelled.append(order_id)

    def verify_event(self, payload, signature):
        if signature != "valid":
            raise PaymentVerificationFailed("Gateway signature verification failed")
        return json.loads(payload)


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set(self, key, value, ex=None):
        self.store[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def eval(self, script, numkeys, *args):
        assert script == redis_tools.VERIFY_OTP
        code_key, attempts_key = args[:numkeys]
        submitted, max_attempts = args[numkeys:]
        code = self.store.get(code_key)
        if code is None:
            return -1
        if code == submitted:
            await self.delete(code_key, attempts_key)
            return 1
        attempts = int(self.store.get(attempts_key, 0)) + 1
        self.store[attempts_key] = str(attempts)
        if attempts >= int(max_attempts):
            await self.delete(code_key, attempts_key)
            return -2
        return 0


@pytest.fixture(autouse=True)
async def database():
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def session():
    async with AsyncSessionLocal() as s:
        yield s


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_tools, "redis", fake)
    return fake


@pytest.fixture
async def client(gateway, fake_redis):
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", headers=API_HEADERS) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


async def make_user(session, email="client@example.com", role="user") -> User:
    await end_implicit_transaction(session)
    async with session.begin():
        user = User(email=email, role=role, display_name=email.split("@")[0].title())
        session.add(user)
        await session.flush()
    return user


async def make_artist(session, email="artist@example.com", categories="singer,dj"):
    user = await make_user(session, email=email, role="artist")
    async with session.begin():
        artist = Artist(user_id=user.id, categories=categories, city="Pune", verification_status="verified")
        session.add(artist)
        await session.flush()
    return user, artist


async def make_service(session, artist, unit="day", price_for_user="1000", price_for_planner="800",
                       advance="200", category="dj") -> Service:
    await end_implicit_transaction(session)
    async with session.begin():
        service = Service(
            artist_id=artist.id, category=category, unit=unit,
            price_for_user=Decimal(price_for_user) if price_for_user is not None else None,
            price_for_planner=Decimal(price_for_planner) if price_for_planner is not None else None,
            advance=Decimal(advance),
        )
        session.add(service)
        await session.flush()
    return service


async def make_planner(session, email="planner@example.com", funds="0"):
    user = await make_user(session, email=email, role="planner")
    async with session.begin():
        planner = PlannerProfile(user_id=user.id, organization="Demo Events")
        session.add(planner)
        await session.flush()
        if Decimal(funds) > 0:
            await credit(session, WalletOwner("planner", planner.id), Decimal(funds), "adjustment")
    return user, planner


async def set_commission(session, booking_pct="10", ticket_pct="5") -> Commission:
    await end_implicit_transaction(session)
    async with session.begin():
        row = Commission(artist_booking_commission=Decimal(booking_pct), ticket_sell_commission=Decimal(ticket_pct))
        session.add(row)
        await session.flush()
    return row


async def reload(model, pk):
    """Read a row through a fresh session so nothing comes from a stale identity map."""
    async with AsyncSessionLocal() as s:
        return await s.get(model, pk)
