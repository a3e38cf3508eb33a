"""
This module provides communication clients for the external systems used by the client layer:
- Session Service (REST): login, registration, identity verification
- Catalog/Order Service (REST): restaurants, menus, orders, tracking, status transitions
- Telemetry Service (REST + server-sent events): fleet stream, snapshot, stop command
All clients share one ApiClient, which owns the HTTP connection pool, attaches the
session credential and maps failures onto the error taxonomy in `errors`.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from .config import API_BASE_URL
from .errors import MalformedResponseError, RequestRejectedError, ServiceUnavailableError
from .events import AuthEventBus, SessionInvalidated
from .models import (
    AuthResponse,
    MenuItem,
    NewOrderRequest,
    Order,
    OrderStatus,
    OrderTrackingInfo,
    Restaurant,
    RobotSnapshot,
    Role,
    User,
)

log = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


def _error_message(response: httpx.Response, default: str) -> str:
    """Returns the service's `{"error": ...}` message, or `default` when absent."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return default


def parse_payload(model_type, data: Any, what: str):
    """
    Validates a decoded JSON payload against a model type.

    Args:
        model_type: A pydantic model or a typing construct such as List[Model].
        data: The decoded JSON value.
        what (str): Short description used in the error message.

    Raises:
        MalformedResponseError: If the payload does not match the model.
    """
    try:
        return TypeAdapter(model_type).validate_python(data)
    except ValidationError as e:
        log.error(f"Malformed {what} payload: {e.error_count()} validation error(s)")
        raise MalformedResponseError(f"Malformed {what} response") from e


# --- Shared HTTP Client ---
class ApiClient:
    """
    Async REST client shared by all service clients.

    Authorized requests carry the current session token as a bearer credential.
    A 401 on an authorized request is published once on the AuthEventBus before
    the RequestRejectedError is raised.
    """

    def __init__(self, base_url: str = API_BASE_URL, auth_events: Optional[AuthEventBus] = None,
                 token_provider: Optional[TokenProvider] = None, transport=None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str): Root URL of the CampusBot API (e.g. 'http://localhost:3000/api').
            auth_events (AuthEventBus, optional): Channel for authorization failures.
            token_provider (Callable, optional): Returns the current session token or None.
            transport (httpx.AsyncBaseTransport, optional): Custom transport (mock or ASGI).
        """
        timeout_config = httpx.Timeout(5.0, read=8.0)
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout_config, transport=transport)
        self.auth_events = auth_events
        self.token_provider = token_provider

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    def _current_token(self, token: Optional[str] = None) -> Optional[str]:
        if token is None and self.token_provider is not None:
            token = self.token_provider()
        return token or None

    @staticmethod
    def _auth_headers(token: Optional[str]) -> dict:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _rejected(self, method: str, path: str, response: httpx.Response, default_message: str,
                  authorized: bool, sent_token: Optional[str] = None) -> RequestRejectedError:
        status = response.status_code
        message = _error_message(response, default_message)
        if status == 401 and authorized:
            log.warning(f"{method} {path} unauthorized (401): {message}")
            if self.auth_events is not None:
                self.auth_events.publish(SessionInvalidated(method=method, path=path, reason=message,
                                                            token=sent_token))
        elif status >= 500:
            log.error(f"{method} {path} failed with HTTP {status}: {message}")
        else:
            log.warning(f"{method} {path} rejected with HTTP {status}: {message}")
        return RequestRejectedError(message, status)

    async def request(self, method: str, path: str, *, json: Any = None, authorized: bool = True,
                      token: Optional[str] = None, error_message: str = "Request failed") -> Any:
        """
        Sends one request and returns the decoded JSON body.

        Args:
            method (str): HTTP method.
            path (str): Path relative to the base URL.
            json: Optional JSON request body.
            authorized (bool): Attach the bearer credential and treat 401 as session invalidation.
            token (str, optional): Explicit token overriding the token provider.
            error_message (str): Message used when the service gives none.

        Returns:
            The decoded JSON body, or None for an empty body.

        Raises:
            ServiceUnavailableError: Connection failure, timeout, redirect loop or undecodable body.
            RequestRejectedError: 4xx or 5xx response.
            MalformedResponseError: Body is not valid JSON.
        """
        sent_token = self._current_token(token) if authorized else None
        headers = self._auth_headers(sent_token)
        try:
            response = await self.client.request(method, path, json=json, headers=headers)
            response.raise_for_status()  # HTTPStatusError on 4xx/5xx
        except httpx.HTTPStatusError as e:
            raise self._rejected(method, path, e.response, error_message, authorized, sent_token) from e
        except httpx.RequestError as e:
            log.error(f"{method} {path}: service unreachable ({e!r})")
            raise ServiceUnavailableError(f"Cannot connect to API at {self.client.base_url}: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            log.error(f"{method} {path}: response is not valid JSON")
            raise MalformedResponseError(f"{error_message}: invalid JSON response") from e

    @asynccontextmanager
    async def stream(self, method: str, path: str, *, authorized: bool = False,
                     error_message: str = "Stream request failed"):
        """
        Opens a long-lived streaming response. The response is closed when the
        context exits, including on cancellation.

        Raises:
            ServiceUnavailableError: Connection failure, or the stream broke mid-read.
            RequestRejectedError: The service answered with an error status.
        """
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        sent_token = self._current_token() if authorized else None
        headers.update(self._auth_headers(sent_token))
        # No read timeout: the server pushes at its own pace
        timeout = httpx.Timeout(5.0, read=None)
        try:
            async with self.client.stream(method, path, headers=headers, timeout=timeout) as response:
                if response.is_error:
                    await response.aread()
                    raise self._rejected(method, path, response, error_message, authorized, sent_token)
                yield response
        except httpx.RequestError as e:
            raise ServiceUnavailableError(f"Stream {path} interrupted: {e}") from e


# --- Session Service Client ---
class AuthClient:
    """Client for the Session service endpoints under /auth."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def login(self, email: str, password: str) -> AuthResponse:
        data = await self.api.request("POST", "/auth/login", json={"email": email, "password": password},
                                      authorized=False, error_message="Login failed")
        return parse_payload(AuthResponse, data, "login")

    async def register(self, email: str, name: str, password: str, role: Role = Role.STUDENT) -> AuthResponse:
        payload = {"email": email, "name": name, "password": password, "role": Role(role).value}
        data = await self.api.request("POST", "/auth/register", json=payload,
                                      authorized=False, error_message="Registration failed")
        return parse_payload(AuthResponse, data, "registration")

    async def current_user(self, token: Optional[str] = None) -> User:
        """
        Verifies a token by fetching the identity it belongs to.

        Args:
            token (str, optional): Token to verify; defaults to the live session token.
        """
        data = await self.api.request("GET", "/auth/me", token=token, error_message="Failed to fetch user")
        return parse_payload(User, data, "user")


# --- Catalog/Order Service Client ---
class CatalogClient:
    """
    Client for restaurants, menus and orders.
    Handles order creation, tracking reads and vendor status transitions.
    """

    def __init__(self, api: ApiClient):
        self.api = api

    async def list_restaurants(self) -> List[Restaurant]:
        data = await self.api.request("GET", "/restaurants", error_message="Failed to fetch restaurants")
        return parse_payload(List[Restaurant], data, "restaurant list")

    async def get_restaurant(self, restaurant_id: str) -> Restaurant:
        data = await self.api.request("GET", f"/restaurants/{restaurant_id}",
                                      error_message="Failed to fetch restaurant")
        return parse_payload(Restaurant, data, "restaurant")

    async def get_menu(self, restaurant_id: str) -> List[MenuItem]:
        data = await self.api.request("GET", f"/restaurants/{restaurant_id}/menu",
                                      error_message="Failed to fetch menu items")
        return parse_payload(List[MenuItem], data, "menu")

    async def create_order(self, order: NewOrderRequest) -> Order:
        """
        Creates a new order via the Catalog/Order service.

        Args:
            order (NewOrderRequest): Validated order payload.

        Returns:
            Order: The created order as stored by the service.
        """
        log.info(f"Creating order for vendor {order.vendorId} ({len(order.items)} item(s))")
        data = await self.api.request("POST", "/orders", json=order.model_dump(mode="json", exclude_none=True),
                                      error_message="Failed to create order")
        created = parse_payload(Order, data, "order")
        log.info(f"[Order: {created.id}] Order created with status {created.status.value}.")
        return created

    async def get_order(self, order_id: str) -> Order:
        data = await self.api.request("GET", f"/orders/{order_id}", error_message="Failed to fetch order")
        return parse_payload(Order, data, "order")

    async def list_orders(self) -> List[Order]:
        """Orders visible to the current user (vendor-scoped for vendors)."""
        data = await self.api.request("GET", "/orders", error_message="Failed to fetch orders")
        return parse_payload(List[Order], data, "order list")

    async def get_tracking(self, order_id: str) -> OrderTrackingInfo:
        data = await self.api.request("GET", f"/orders/{order_id}/tracking",
                                      error_message="Failed to load order tracking")
        return parse_payload(OrderTrackingInfo, data, "tracking")

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        data = await self.api.request("PATCH", f"/orders/{order_id}/status",
                                      json={"status": OrderStatus(status).value},
                                      error_message="Failed to update order status")
        updated = parse_payload(Order, data, "order")
        log.info(f"[Order: {order_id}] Status now {updated.status.value}.")
        return updated


# --- Telemetry Service Client ---
class TelemetryClient:
    """Client for the fleet telemetry endpoints under /telemetry."""

    STREAM_PATH = "/telemetry/stream"

    def __init__(self, api: ApiClient):
        self.api = api

    def open_stream(self):
        """Async context manager yielding the live `text/event-stream` response."""
        return self.api.stream("GET", self.STREAM_PATH, error_message="Failed to connect to telemetry stream")

    async def snapshot(self) -> List[RobotSnapshot]:
        data = await self.api.request("GET", "/telemetry/snapshot", error_message="Failed to fetch fleet snapshot")
        return parse_payload(List[RobotSnapshot], data, "fleet snapshot")

    async def stop_robot(self, robot_id: str) -> None:
        """
        Sends a one-shot stop command for a robot.

        Raises:
            ServiceUnavailableError: If the service cannot be reached.
            RequestRejectedError: If the service refuses the command.
        """
        log.info(f"[Robot: {robot_id}] Sending stop command.")
        await self.api.request("POST", f"/telemetry/robots/{robot_id}/stop", error_message="Failed to stop robot")
