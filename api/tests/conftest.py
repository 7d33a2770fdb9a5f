"""
Shared test fixtures: in-memory database, controllable clock and a fake
telematics provider served through httpx.MockTransport.
"""
import asyncio
import os
from datetime import datetime, timedelta

# must be set before tripsense.config is imported
os.environ.setdefault("POLL_INTERVAL_SECONDS", "0")
os.environ.setdefault("POLL_RATE_LIMIT", "1000/minute")
os.environ.pop("POLL_SERVICE_KEY", None)

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tripsense.db import Base
from tripsense.stores import ConnectionStore


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 8, 0, 0))


class FakeProvider:
    """Stand-in for the vehicle data provider and its token endpoint."""

    def __init__(self):
        self.odometer = {}  # vehicle id -> km
        self.location = {}  # vehicle id -> {"latitude": .., "longitude": ..}
        self.valid_tokens = {"token-1"}
        self.failures = {}  # (vehicle id, signal) -> status code
        self.refresh_status = 200
        self.refresh_calls = 0
        self.requests = []  # (path, bearer token)
        self.delay = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if self.delay:
            await asyncio.sleep(self.delay)

        if path.endswith("/oauth/token"):
            self.refresh_calls += 1
            self.requests.append((path, None))
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            token = f"token-{self.refresh_calls + 1}"
            self.valid_tokens.add(token)
            return httpx.Response(200, json={"access_token": token, "refresh_token": f"refresh-{self.refresh_calls + 1}"})

        token = request.headers.get("Authorization", "")[len("Bearer "):]
        self.requests.append((path, token))
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"error": "AUTHENTICATION"})

        vehicle_id, signal = path.split("/")[-2:]
        if (vehicle_id, signal) in self.failures:
            return httpx.Response(self.failures[(vehicle_id, signal)])
        if signal == "odometer" and vehicle_id in self.odometer:
            return httpx.Response(200, json={"distance": self.odometer[vehicle_id]})
        if signal == "location" and vehicle_id in self.location:
            return httpx.Response(200, json=self.location[vehicle_id])
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def signal_requests(self, signal: str):
        return [(p, t) for p, t in self.requests if p.endswith(f"/{signal}")]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_connection(db):
    def _make(vehicle_id="veh-1", user_id="user-1", access_token="token-1", refresh_token="refresh-1"):
        return ConnectionStore(db).create(
            user_id=user_id,
            vehicle_id=vehicle_id,
            access_token=access_token,
            refresh_token=refresh_token,
            make="Volkswagen",
            model="ID.5",
            year=2023,
        )
    return _make
