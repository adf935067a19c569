import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import httpx
import jwt
import pytest

from config import settings
from domain.access import generate_secret
from domain.models import Resource
from infrastructure.database import SqlCredentialStore, create_engine_for, create_session_maker, init_db
from infrastructure.locks import LockActuator, UnlockResult
from main import build_services, create_app

# Wednesday, inside any daytime window
START = datetime(2024, 5, 15, 12, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeActuator(LockActuator):
    def __init__(self, success: bool = True, delay: float = 0.0, error: str = "Lock jammed", raises: Optional[Exception] = None):
        self.success = success
        self.delay = delay
        self.error = error
        self.raises = raises
        self.calls: List[str] = []

    async def unlock(self, lock_id: str) -> UnlockResult:
        self.calls.append(lock_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        if not self.success:
            return UnlockResult(success=False, error=self.error)
        return UnlockResult(success=True, method="fake")


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
async def session_maker(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'access.db'}")
    await init_db(engine)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    return SqlCredentialStore(session_maker)


@pytest.fixture
def make_resource(store):
    async def _make(**overrides) -> Resource:
        data = {
            "name": "Storage Unit A-12",
            "address": "1200 Harbor Blvd",
            "lock_id": "1",
            "otp_secret": generate_secret(),
        }
        data.update(overrides)
        return await store.add_resource(Resource(**data))

    return _make


@pytest.fixture
def actuator():
    return FakeActuator()


@pytest.fixture
def services(store, actuator, clock):
    return build_services(store, actuator=actuator, clock=clock)


@pytest.fixture
def issuer(services):
    return services.issuer


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
async def client(services):
    app = create_app(services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


def bearer(subject: str) -> dict:
    token = jwt.encode({"sub": subject}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return {"Authorization": f"Bearer {token}"}
