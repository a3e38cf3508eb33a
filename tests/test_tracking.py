"""
Tests for the Order Lifecycle Tracker: progress table, polling and vendor transitions.
"""

import asyncio
import json

import httpx
import pytest

from campusbot_client.clients import CatalogClient
from campusbot_client.errors import InvalidTransitionError, RequestRejectedError
from campusbot_client.models import Order, OrderStatus
from campusbot_client.tracking import OrderTracker, count_by_status, get_order_progress, is_allowed_transition
from conftest import order_payload, tracking_payload


@pytest.mark.parametrize("status, progress, label", [
    (OrderStatus.CREATED, 0, "Order Created"),
    (OrderStatus.PREPARING, 25, "Preparing Your Order"),
    (OrderStatus.READY, 50, "Ready for Pickup"),
    (OrderStatus.ASSIGNED, 60, "Robot Assigned"),
    (OrderStatus.EN_ROUTE, 80, "On The Way"),
    (OrderStatus.DELIVERED, 100, "Delivered"),
    (OrderStatus.CANCELLED, 0, "Cancelled"),
])
def test_progress_table(status, progress, label):
    entry = get_order_progress(status)
    assert entry.progress == progress
    assert entry.statusLabel == label


def test_terminal_statuses_have_no_next_estimate():
    assert get_order_progress(OrderStatus.DELIVERED).estimatedTimeToNext is None
    assert get_order_progress(OrderStatus.PREPARING).estimatedTimeToNext == 10


def test_vendor_transitions():
    assert is_allowed_transition(OrderStatus.CREATED, OrderStatus.PREPARING)
    assert is_allowed_transition(OrderStatus.PREPARING, OrderStatus.READY)
    assert not is_allowed_transition(OrderStatus.CREATED, OrderStatus.READY)
    assert not is_allowed_transition(OrderStatus.READY, OrderStatus.ASSIGNED)
    assert not is_allowed_transition(OrderStatus.DELIVERED, OrderStatus.PREPARING)


@pytest.mark.asyncio
async def test_invalid_transition_rejected_without_network(make_api):
    requests = []
    tracker = OrderTracker(CatalogClient(make_api(lambda request: requests.append(request))))

    with pytest.raises(InvalidTransitionError):
        await tracker.request_transition("order-1", OrderStatus.READY, current_status=OrderStatus.CREATED)
    with pytest.raises(InvalidTransitionError):
        await tracker.request_transition("order-1", OrderStatus.PREPARING)

    assert requests == []


@pytest.mark.asyncio
async def test_start_tracking_terminal_order_does_not_poll(make_api):
    api = make_api(lambda request: httpx.Response(200, json=tracking_payload(status="DELIVERED", progress=100)))
    tracker = OrderTracker(CatalogClient(api), poll_interval=0.01)

    info = await tracker.start_tracking("order-1")

    assert info.order.status is OrderStatus.DELIVERED
    assert tracker.snapshot == info
    assert not tracker.is_polling


@pytest.mark.asyncio
async def test_initial_fetch_error_is_raised(make_api):
    api = make_api(lambda request: httpx.Response(404, json={"error": "Order not found"}))
    tracker = OrderTracker(CatalogClient(api), poll_interval=0.01)

    with pytest.raises(RequestRejectedError, match="Order not found"):
        await tracker.start_tracking("missing")
    assert tracker.snapshot is None
    assert not tracker.is_polling


@pytest.mark.asyncio
async def test_polling_survives_errors_and_stops_when_terminal(make_api, wait_until):
    responses = [
        httpx.Response(200, json=tracking_payload(status="CREATED")),
        httpx.Response(500, json={"error": "Internal server error"}),
        httpx.Response(200, json=tracking_payload(status="EN_ROUTE", progress=80, label="On The Way")),
        httpx.Response(200, json=tracking_payload(status="DELIVERED", progress=100, label="Delivered")),
    ]
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return responses[len(calls) - 1]

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=0.01)
    statuses = []
    tracker.subscribe(lambda t: statuses.append(t.snapshot.order.status))

    await tracker.start_tracking("order-1")
    await wait_until(lambda: not tracker.is_polling)

    assert len(calls) == 4
    assert statuses == [OrderStatus.CREATED, OrderStatus.EN_ROUTE, OrderStatus.DELIVERED]
    assert tracker.snapshot.progress.progress == 100

    await asyncio.sleep(3 * tracker.poll_interval)
    assert len(calls) == 4


@pytest.mark.asyncio
async def test_stop_tracking_discards_in_flight_response(make_api):
    entered = asyncio.Event()
    release = asyncio.Event()

    async def handler(request):
        entered.set()
        await release.wait()
        return httpx.Response(200, json=tracking_payload(status="CREATED"))

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=0.01)
    task = asyncio.create_task(tracker.start_tracking("order-1"))
    await entered.wait()

    tracker.stop_tracking()
    tracker.stop_tracking()
    release.set()
    await task

    assert tracker.snapshot is None
    assert not tracker.is_polling


@pytest.mark.asyncio
async def test_restart_discards_response_for_previous_order(make_api):
    release_first = asyncio.Event()
    first_entered = asyncio.Event()

    async def handler(request):
        order_id = request.url.path.split("/")[-2]
        if order_id == "order-1":
            first_entered.set()
            await release_first.wait()
        return httpx.Response(200, json=tracking_payload(order_id=order_id, status="DELIVERED", progress=100))

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=0.01)
    first = asyncio.create_task(tracker.start_tracking("order-1"))
    await first_entered.wait()

    await tracker.start_tracking("order-2")
    release_first.set()
    await first

    assert tracker.order_id == "order-2"
    assert tracker.snapshot.order.id == "order-2"


@pytest.mark.asyncio
async def test_transition_updates_tracked_snapshot(make_api):
    sent = []

    def handler(request):
        if request.method == "PATCH":
            sent.append(json.loads(request.content))
            return httpx.Response(200, json=order_payload(status="PREPARING"))
        return httpx.Response(200, json=tracking_payload(status="CREATED"))

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=60)
    await tracker.start_tracking("order-1")

    updated = await tracker.request_transition("order-1", OrderStatus.PREPARING)

    assert updated.status is OrderStatus.PREPARING
    assert sent == [{"status": "PREPARING"}]
    assert tracker.snapshot.order.status is OrderStatus.PREPARING
    assert tracker.snapshot.progress.progress == 25
    await tracker.aclose()
    assert not tracker.is_polling


@pytest.mark.asyncio
async def test_polling_survives_undecodable_response(make_api, wait_until):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) == 2:
            raise httpx.DecodingError("bad gzip", request=request)
        status = "CREATED" if len(calls) == 1 else "DELIVERED"
        return httpx.Response(200, json=tracking_payload(status=status))

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=0.01)
    await tracker.start_tracking("order-1")
    await wait_until(lambda: not tracker.is_polling)

    assert len(calls) == 3
    assert tracker.snapshot.order.status is OrderStatus.DELIVERED


@pytest.mark.asyncio
async def test_transition_result_discarded_after_stop(make_api):
    entered = asyncio.Event()
    release = asyncio.Event()

    async def handler(request):
        if request.method == "PATCH":
            entered.set()
            await release.wait()
            return httpx.Response(200, json=order_payload(status="PREPARING"))
        return httpx.Response(200, json=tracking_payload(status="CREATED"))

    tracker = OrderTracker(CatalogClient(make_api(handler)), poll_interval=60)
    await tracker.start_tracking("order-1")
    task = asyncio.create_task(tracker.request_transition("order-1", OrderStatus.PREPARING))
    await entered.wait()

    tracker.stop_tracking()
    release.set()
    updated = await task

    assert updated.status is OrderStatus.PREPARING
    assert tracker.snapshot.order.status is OrderStatus.CREATED


def test_count_by_status():
    orders = [
        Order.model_validate(order_payload(order_id="a", status="CREATED")),
        Order.model_validate(order_payload(order_id="b", status="PREPARING")),
        Order.model_validate(order_payload(order_id="c", status="CREATED")),
    ]

    counts = count_by_status(orders)

    assert list(counts) == list(OrderStatus)
    assert counts[OrderStatus.CREATED] == 2
    assert counts[OrderStatus.PREPARING] == 1
    assert counts[OrderStatus.DELIVERED] == 0
