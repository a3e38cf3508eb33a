"""
workflow.py — Checkout Workflow

This module turns the pending cart into an order on the Catalog/Order service.

Workflow Overview:
1. Check preconditions (authenticated session, non-empty cart)
2. Resolve the vendor of the restaurant the cart is bound to
3. Create the order via the Catalog/Order service (REST)
4. Clear the cart only after the service accepted the order
"""

import logging
from typing import Optional

from .cart import CartStore
from .clients import CatalogClient
from .config import DEFAULT_DELIVERY_LAT, DEFAULT_DELIVERY_LNG
from .errors import EmptyCartError, NotAuthenticatedError
from .models import NewOrderRequest, Order, OrderItem
from .session import SessionManager

log = logging.getLogger(__name__)


def build_order_request(cart: CartStore, user_id: str, vendor_id: str, delivery_location: str,
                        lat: Optional[float] = None, lng: Optional[float] = None) -> NewOrderRequest:
    """Builds the `POST /orders` payload from the current cart lines."""
    items = [
        OrderItem(name=line.item.name, quantity=line.quantity, price=line.item.price)
        for line in cart.lines
    ]
    return NewOrderRequest(
        userId=user_id,
        vendorId=vendor_id,
        items=items,
        deliveryLocation=delivery_location.strip(),
        deliveryLocationLat=DEFAULT_DELIVERY_LAT if lat is None else lat,
        deliveryLocationLng=DEFAULT_DELIVERY_LNG if lng is None else lng,
    )


async def place_order(cart: CartStore, session: SessionManager, catalog: CatalogClient,
                      delivery_location: str, lat: Optional[float] = None,
                      lng: Optional[float] = None) -> Order:
    """
    Executes checkout for the current cart.

    Args:
        cart (CartStore): The cart to order; cleared on success.
        session (SessionManager): Provides the ordering user.
        catalog (CatalogClient): Catalog/Order service client.
        delivery_location (str): Free-text delivery location.
        lat (float, optional): Delivery latitude; campus default when omitted.
        lng (float, optional): Delivery longitude; campus default when omitted.

    Returns:
        Order: The order created by the service.

    Raises:
        NotAuthenticatedError: No live session.
        EmptyCartError: Nothing to order.
        ValueError: Blank delivery location.
        ServiceUnavailableError / RequestRejectedError / MalformedResponseError:
            The service call failed; the cart is left untouched.
    """
    user = session.user
    if user is None:
        raise NotAuthenticatedError("Please log in to place an order")
    if cart.is_empty or cart.restaurant_id is None:
        raise EmptyCartError("Your cart is empty")
    if not delivery_location.strip():
        raise ValueError("Please enter a delivery location")

    restaurant_id = cart.restaurant_id
    log_prefix = f"[Cart: {restaurant_id}]"
    log.info(f"{log_prefix} Checkout started: {cart.count()} item(s), total {cart.total():.2f}.")

    # --- 1. Resolve vendor ---
    restaurant = await catalog.get_restaurant(restaurant_id)

    # --- 2. Create order ---
    request = build_order_request(cart, user.id, restaurant.vendorId, delivery_location, lat, lng)
    order = await catalog.create_order(request)

    # --- 3. Clear cart ---
    cart.clear()
    log.info(f"[Order: {order.id}] Checkout complete; cart cleared.")
    return order
