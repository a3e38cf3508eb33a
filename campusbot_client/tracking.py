"""
tracking.py — Order Lifecycle Tracker

The server owns the order lifecycle; the client observes it and requests the
two vendor transitions it is allowed to drive.

Lifecycle (forward order):
    CREATED → PREPARING → READY → ASSIGNED → EN_ROUTE → DELIVERED
    CANCELLED can follow any non-terminal state. DELIVERED and CANCELLED are terminal.

Polling:
    start_tracking() fetches immediately and surfaces errors. While the order
    is not terminal a background task re-fetches every poll interval; its
    failures are logged and the previous snapshot stays visible. Every fetch
    takes a sequence number and only the newest one may update the snapshot.
"""

import asyncio
import logging
from typing import Dict, Iterable, Optional, Tuple

from .clients import CatalogClient
from .config import POLL_INTERVAL_SECONDS
from .errors import CampusBotError, InvalidTransitionError
from .events import Observable
from .models import Order, OrderStatus, OrderStatusProgress, OrderTrackingInfo

log = logging.getLogger(__name__)

# status -> (progress %, label, estimated minutes to the next status)
_PROGRESS_TABLE: Dict[OrderStatus, Tuple[int, str, Optional[int]]] = {
    OrderStatus.CREATED: (0, "Order Created", 2),
    OrderStatus.PREPARING: (25, "Preparing Your Order", 10),
    OrderStatus.READY: (50, "Ready for Pickup", 5),
    OrderStatus.ASSIGNED: (60, "Robot Assigned", 3),
    OrderStatus.EN_ROUTE: (80, "On The Way", 15),
    OrderStatus.DELIVERED: (100, "Delivered", None),
    OrderStatus.CANCELLED: (0, "Cancelled", None),
}

# The only edges a vendor may request; later edges belong to robot assignment
VENDOR_TRANSITIONS: Dict[OrderStatus, OrderStatus] = {
    OrderStatus.CREATED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
}


def get_order_progress(status: OrderStatus) -> OrderStatusProgress:
    """
    Maps an order status to its fixed progress entry.

    Args:
        status (OrderStatus): Any lifecycle status.

    Returns:
        OrderStatusProgress: Progress percentage, label and estimated minutes
        to the next status. CANCELLED reports 0 and is rendered as cancelled.
    """
    status = OrderStatus(status)
    progress, label, next_time = _PROGRESS_TABLE[status]
    return OrderStatusProgress(status=status, progress=progress, statusLabel=label,
                               estimatedTimeToNext=next_time)


def next_vendor_status(status: OrderStatus) -> Optional[OrderStatus]:
    return VENDOR_TRANSITIONS.get(OrderStatus(status))


def is_allowed_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return next_vendor_status(current) is OrderStatus(requested)


def count_by_status(orders: Iterable[Order]) -> Dict[OrderStatus, int]:
    """Number of orders per status, every status present, in lifecycle order."""
    counts = {status: 0 for status in OrderStatus}
    for order in orders:
        counts[order.status] += 1
    return counts


class OrderTracker(Observable):
    """
    Keeps a live OrderTrackingInfo for one order at a time.

    Args:
        catalog (CatalogClient): Catalog/Order service client.
        poll_interval (float): Seconds between polls (10 by default).
    """

    def __init__(self, catalog: CatalogClient, poll_interval: float = POLL_INTERVAL_SECONDS):
        super().__init__()
        self._catalog = catalog
        self.poll_interval = poll_interval
        self._order_id: Optional[str] = None
        self._snapshot: Optional[OrderTrackingInfo] = None
        # bumped by start/stop; a poller or response from an older generation is stale
        self._generation = 0
        # bumped by every fetch and transition; only the newest may update the snapshot
        self._fetch_seq = 0
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def order_id(self) -> Optional[str]:
        return self._order_id

    @property
    def snapshot(self) -> Optional[OrderTrackingInfo]:
        return self._snapshot

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start_tracking(self, order_id: str) -> OrderTrackingInfo:
        """
        Starts tracking an order, superseding any previous tracking.

        Returns:
            OrderTrackingInfo: The initial tracking payload.

        Raises:
            ServiceUnavailableError / RequestRejectedError / MalformedResponseError:
                If the initial fetch fails. No polling is scheduled in that case.
        """
        self._cancel_poller()
        self._generation += 1
        generation = self._generation
        self._order_id = order_id
        self._snapshot = None
        log.info(f"[Order: {order_id}] Tracking started.")

        info = await self._fetch(order_id, generation)

        if generation != self._generation:
            log.info(f"[Order: {order_id}] Tracking was stopped or restarted during the initial fetch.")
        elif info.order.status.is_terminal:
            log.info(f"[Order: {order_id}] Order already {info.order.status.value}; no polling needed.")
        else:
            self._poll_task = asyncio.create_task(self._poll(order_id, generation),
                                                  name=f"order-tracking-{order_id}")
        return info

    def stop_tracking(self):
        """Cancels polling. Responses still in flight are discarded. Idempotent."""
        self._generation += 1
        if self._cancel_poller():
            log.info(f"[Order: {self._order_id}] Tracking stopped.")

    async def aclose(self):
        """Stops tracking and waits until the poller has exited."""
        task = self._poll_task
        self.stop_tracking()
        if task is not None:
            await asyncio.wait([task])

    async def request_transition(self, order_id: str, next_status: OrderStatus,
                                 current_status: Optional[OrderStatus] = None) -> Order:
        """
        Requests a vendor status transition.

        Only CREATED→PREPARING and PREPARING→READY are accepted; anything else
        is rejected before any network call.

        Args:
            order_id (str): The order to advance.
            next_status (OrderStatus): Requested status.
            current_status (OrderStatus, optional): Status the caller sees. Defaults
                to the tracked snapshot's status when this order is tracked.

        Returns:
            Order: The service's updated order, which also replaces the tracked projection.

        Raises:
            InvalidTransitionError: Transition not allowed or current status unknown.
        """
        next_status = OrderStatus(next_status)
        if current_status is None and self._snapshot is not None and self._snapshot.order.id == order_id:
            current_status = self._snapshot.order.status
        if current_status is None:
            raise InvalidTransitionError(f"Current status of order {order_id} is unknown")
        current_status = OrderStatus(current_status)

        if not is_allowed_transition(current_status, next_status):
            log.warning(f"[Order: {order_id}] Rejected transition {current_status.value} -> {next_status.value}.")
            raise InvalidTransitionError(
                f"Cannot move order from {current_status.value} to {next_status.value}"
            )

        # Responses of polls started before this request are outdated
        self._fetch_seq += 1
        generation = self._generation
        updated = await self._catalog.update_order_status(order_id, next_status)

        snapshot = self._snapshot
        if generation != self._generation:
            log.info(f"[Order: {order_id}] Tracking changed during the transition; snapshot left as is.")
        elif snapshot is not None and self._order_id == order_id and snapshot.order.id == updated.id:
            self._fetch_seq += 1
            self._apply(snapshot.model_copy(update={
                "order": updated,
                "progress": get_order_progress(updated.status),
            }))
        return updated

    async def _fetch(self, order_id: str, generation: int) -> OrderTrackingInfo:
        self._fetch_seq += 1
        seq = self._fetch_seq
        info = await self._catalog.get_tracking(order_id)
        if generation != self._generation or seq != self._fetch_seq:
            log.debug(f"[Order: {order_id}] Discarding superseded tracking response.")
        else:
            self._apply(info)
        return info

    async def _poll(self, order_id: str, generation: int):
        while True:
            await asyncio.sleep(self.poll_interval)
            if generation != self._generation:
                return
            try:
                await self._fetch(order_id, generation)
            except CampusBotError as e:
                log.warning(f"[Order: {order_id}] Polling failed, keeping last snapshot: {e}")
                continue

            snapshot = self._snapshot
            if snapshot is not None and snapshot.order.status.is_terminal:
                log.info(f"[Order: {order_id}] Reached {snapshot.order.status.value}; polling finished.")
                return

    def _apply(self, info: OrderTrackingInfo):
        previous = self._snapshot
        self._snapshot = info
        if previous is None or previous.order.status is not info.order.status:
            log.info(f"[Order: {info.order.id}] Status {info.order.status.value} ({info.progress.progress}%).")
        self._notify()

    def _cancel_poller(self) -> bool:
        task = self._poll_task
        if task is None or task.done():
            return False
        task.cancel()
        return True
