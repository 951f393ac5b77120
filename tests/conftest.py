import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from delivery.config import ServiceConfig
from delivery.lifecycle import OrderLifecycle
from delivery.models import GeoPoint, Route, Store
from delivery.store import MemoryDocumentStore, STORES


HOME = GeoPoint(52.62952818500918, -1.1380281441788296)
STORE = Store(name="Haymarket Grocers", lat=52.6363, lng=-1.1332)
CUSTOMER = GeoPoint(52.6181, -1.1195)


class Clock:
    """Deterministic clock: every call is one minute later."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now = self.now + timedelta(minutes=1)
        return self.now


class FakeDirections:
    def __init__(self, points=None, error=None, on_fetch=None):
        self.points = points
        self.error = error
        self.on_fetch = on_fetch
        self.calls = []

    async def fetch_route(self, origin, destination, leg=None):
        self.calls.append((origin, destination, leg))
        if self.on_fetch is not None:
            await self.on_fetch(origin, destination, leg)
        if self.error is not None:
            raise self.error
        pts = self.points if self.points is not None else [origin, destination]
        return Route(origin=origin, destination=destination, points=list(pts), leg=leg)


async def instant(_seconds):
    await asyncio.sleep(0)


async def forever(_seconds):
    await asyncio.Event().wait()


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def cfg():
    return ServiceConfig(directions_mode="straight", straight_route_points=4)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    s = MemoryDocumentStore()
    run(s.put(STORES, STORE.name, STORE.to_doc()))
    return s


@pytest.fixture
def lifecycle(store, cfg, clock):
    return OrderLifecycle(store, cfg, clock=clock)


async def place_order(lifecycle, customer_id="cust-1", pin="4821", note="Leave at the door"):
    return await lifecycle.create(
        customer_id=customer_id,
        store=STORE.name,
        receipt="0123456789",
        note=note,
        location=CUSTOMER,
        price=3,
        pin=pin,
        address="1 Clarendon Park Rd",
    )
