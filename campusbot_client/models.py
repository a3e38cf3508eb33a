"""
models.py — Data Models for Catalog, Orders, Sessions and Fleet Telemetry

This module defines the data structures exchanged with the CampusBot services
and persisted in durable client storage. It uses Pydantic models to ensure type
safety and automatic validation of incoming data. Field names match the wire
format of the services.

Models:
    - User / AuthResponse / Session: Identity returned by the Session service.
    - Restaurant / MenuItem: Catalog entities.
    - CartLine / CartSnapshot: Client-held pending order contents.
    - OrderItem / NewOrderRequest / Order: Server-owned order projection.
    - OrderStatusProgress / OrderTrackingInfo: Tracking payload.
    - RobotSnapshot: One robot in a fleet telemetry frame.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    STUDENT = "STUDENT"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"
    ENGINEER = "ENGINEER"


class OrderStatus(str, Enum):
    """Order lifecycle states, declared in forward order."""
    CREATED = "CREATED"
    PREPARING = "PREPARING"
    READY = "READY"
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class RobotStatus(str, Enum):
    IDLE = "IDLE"
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    CHARGING = "CHARGING"
    MAINTENANCE = "MAINTENANCE"
    OFFLINE = "OFFLINE"


class Location(BaseModel):
    lat: float
    lng: float


class User(BaseModel):
    """
    Authenticated identity as returned by the Session service.

    Attributes:
        id (str): User identifier.
        email (str): Login e-mail address.
        name (str): Display name (may be empty).
        role (Role): One of STUDENT, VENDOR, ADMIN, ENGINEER.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str = ""
    role: Role


class AuthResponse(BaseModel):
    user: User
    token: str


class Restaurant(BaseModel):
    id: str
    vendorId: str
    name: str
    description: Optional[str] = None
    location: Optional[Location] = None
    hours: Optional[Dict[str, str]] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class MenuItem(BaseModel):
    """
    A single menu entry of a restaurant.

    Attributes:
        id (str): Menu item identifier, unique per restaurant.
        restaurantId (str): Owning restaurant.
        price (float): Unit price in major currency units.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    restaurantId: str
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: Optional[str] = None
    available: bool = True
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class CartLine(BaseModel):
    """
    One line of the cart.

    Attributes:
        item (MenuItem): The menu item, including its unit price at add time.
        quantity (int): Number of units. Must be greater than zero.
        restaurantId (str): Restaurant the line was added from.
    """
    item: MenuItem
    quantity: int = Field(..., gt=0)
    restaurantId: str

    @property
    def line_total(self) -> float:
        return self.item.price * self.quantity


class CartSnapshot(BaseModel):
    """Persisted form of the cart: all lines plus the restaurant binding."""
    lines: List[CartLine] = Field(default_factory=list)
    restaurantId: Optional[str] = None


class OrderItem(BaseModel):
    """
    Represents a single product item in an order.

    Attributes:
        name (str): Menu item name at order time.
        quantity (int): The quantity ordered. Must be greater than zero.
        price (float): Unit price at order time.
    """
    name: str
    quantity: int = Field(..., gt=0)
    price: float


class NewOrderRequest(BaseModel):
    """
    Payload of `POST /orders`.

    Attributes:
        userId (str): Ordering user.
        vendorId (str): Vendor owning the restaurant the cart is bound to.
        items (List[OrderItem]): Ordered items.
        deliveryLocation (str): Free-text delivery location.
        deliveryLocationLat (float, optional): Delivery latitude.
        deliveryLocationLng (float, optional): Delivery longitude.
    """
    userId: str
    vendorId: str
    items: List[OrderItem] = Field(..., min_length=1)
    deliveryLocation: str = Field(..., min_length=1)
    deliveryLocationLat: Optional[float] = None
    deliveryLocationLng: Optional[float] = None


class Order(BaseModel):
    """Read-only client projection of a server-owned order."""
    id: str
    userId: Optional[str] = None
    vendorId: Optional[str] = None
    robotId: Optional[str] = None
    status: OrderStatus
    items: List[OrderItem] = Field(default_factory=list)
    total: float
    deliveryLocation: str
    deliveryLocationLat: Optional[float] = None
    deliveryLocationLng: Optional[float] = None
    createdAt: datetime
    updatedAt: datetime


class OrderStatusProgress(BaseModel):
    status: OrderStatus
    progress: int = Field(..., ge=0, le=100)
    statusLabel: str
    estimatedTimeToNext: Optional[int] = None


class RobotSnapshot(BaseModel):
    """
    State of one robot as of a telemetry frame.

    Attributes:
        id (str): Record identifier.
        robotId (str): Human-readable robot identifier (e.g. 'RB-SIM-1').
        status (RobotStatus): Operational status.
        batteryPercent (float): Remaining charge, 0..100.
        location (Location): Current position.
        speed (float, optional): km/h.
        distanceTraveled (float, optional): meters.
        lastUpdate (datetime, optional): Timestamp of the reading.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    robotId: str
    status: RobotStatus
    batteryPercent: float = Field(..., ge=0, le=100)
    location: Location
    speed: Optional[float] = None
    distanceTraveled: Optional[float] = None
    lastUpdate: Optional[datetime] = None


class OrderTrackingInfo(BaseModel):
    """
    Payload of `GET /orders/{id}/tracking`.

    Attributes:
        order (Order): Current order projection.
        progress (OrderStatusProgress): Progress derived from the status.
        robot (RobotSnapshot, optional): Assigned robot, if any.
        estimatedDeliveryTime (float, optional): Minutes until delivery.
    """
    order: Order
    progress: OrderStatusProgress
    robot: Optional[RobotSnapshot] = None
    estimatedDeliveryTime: Optional[float] = None


class Session(BaseModel):
    """The authenticated identity and credential held by the running client."""
    model_config = ConfigDict(frozen=True)

    user: User
    token: str
