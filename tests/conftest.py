"""
Shared fixtures for the CampusBot client test suite.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

from campusbot_client.clients import ApiClient
from campusbot_client.events import AuthEventBus
from campusbot_client.models import MenuItem
from campusbot_client.storage import MemoryStorage
from mock_services.mock_campus_api import create_app

BASE_URL = "http://testserver/api"


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def bus():
    return AuthEventBus()


@pytest.fixture
def invalidations(bus):
    events = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def burger():
    return MenuItem(id="item-burger", restaurantId="rest-burger", name="Burger", price=5.00)


@pytest.fixture
def fries():
    return MenuItem(id="item-fries", restaurantId="rest-burger", name="Fries", price=2.50)


@pytest.fixture
def margherita():
    return MenuItem(id="item-margherita", restaurantId="rest-pizza", name="Margherita", price=8.00)


@pytest_asyncio.fixture
async def make_api(bus):
    """Factory for ApiClients backed by an httpx.MockTransport handler."""
    clients = []

    def factory(handler, token=None):
        api = ApiClient(BASE_URL, auth_events=bus, token_provider=lambda: token,
                        transport=httpx.MockTransport(handler))
        clients.append(api)
        return api

    yield factory
    for api in clients:
        await api.aclose()


@pytest.fixture
def mock_app():
    return create_app(simulate=False)


@pytest_asyncio.fixture
async def app_api(mock_app, bus):
    """ApiClient talking to the in-process mock CampusBot API."""
    api = ApiClient(BASE_URL, auth_events=bus, transport=httpx.ASGITransport(app=mock_app))
    yield api
    await api.aclose()


@pytest.fixture
def wait_until():
    async def wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)
    return wait


def order_payload(order_id="order-1", status="CREATED", **overrides):
    now = datetime.now(timezone.utc).isoformat()
    order = {
        "id": order_id,
        "userId": "user-student",
        "vendorId": "user-vendor",
        "robotId": None,
        "status": status,
        "items": [{"name": "Burger", "quantity": 2, "price": 5.0}],
        "total": 10.0,
        "deliveryLocation": "Library",
        "createdAt": now,
        "updatedAt": now,
    }
    order.update(overrides)
    return order


def tracking_payload(order_id="order-1", status="CREATED", progress=0, label="Order Created"):
    return {
        "order": order_payload(order_id, status),
        "progress": {"status": status, "progress": progress, "statusLabel": label, "estimatedTimeToNext": None},
        "robot": None,
        "estimatedDeliveryTime": None,
    }
