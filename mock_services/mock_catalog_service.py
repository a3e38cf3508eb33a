"""
mock_catalog_service.py — Mock Implementation of the Catalog/Order and Session Services (REST API)

This module provides a simulated CampusBot backend for local development and
integration tests. It keeps restaurants, menus, users, tokens and orders in
memory and answers with the same payload shapes and `{"error": message}`
bodies as the real services.

Simulation Scenarios:
    • Login / registration / token verification (401 for unknown tokens)
    • Restaurant and menu browsing
    • Order creation, vendor-scoped listing and status updates
    • Tracking payload with derived progress and assigned robot

Seeded accounts (password in parentheses):
    student@campus.edu (student123), vendor@campus.edu (vendor123),
    engineer@campus.edu (engineer123)
"""

import logging
import math
import secrets
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from campusbot_client.models import NewOrderRequest, OrderStatus, Role
from campusbot_client.tracking import get_order_progress


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str
    role: Role = Role.STUDENT


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CampusStore:
    """In-memory state of the mock backend, seeded with two restaurants and three accounts."""

    def __init__(self):
        self.users: Dict[str, dict] = {}
        self.passwords: Dict[str, str] = {}
        self.tokens: Dict[str, str] = {}
        self.restaurants: Dict[str, dict] = {}
        self.menu_items: Dict[str, dict] = {}
        self.orders: Dict[str, dict] = {}
        self.robots: Dict[str, dict] = {}
        self._seed()

    def _seed(self):
        self.add_user("student@campus.edu", "Sam Student", "student123", Role.STUDENT, user_id="user-student")
        vendor = self.add_user("vendor@campus.edu", "Vera Vendor", "vendor123", Role.VENDOR, user_id="user-vendor")
        self.add_user("engineer@campus.edu", "Eli Engineer", "engineer123", Role.ENGINEER, user_id="user-engineer")

        burgers = self.add_restaurant("rest-burger", vendor["id"], "Burger Barn", 35.7847, -78.6821)
        self.add_menu_item("item-burger", burgers["id"], "Burger", 5.00, "Mains")
        self.add_menu_item("item-fries", burgers["id"], "Fries", 2.50, "Sides")
        pizza = self.add_restaurant("rest-pizza", vendor["id"], "Pizza Place", 35.7861, -78.6638)
        self.add_menu_item("item-margherita", pizza["id"], "Margherita", 8.00, "Pizza")

        for index in range(2):
            robot_id = f"robot-{index + 1}"
            self.robots[robot_id] = {
                "id": robot_id,
                "robotId": f"RB-{index + 1:03d}",
                "status": "IDLE",
                "batteryPercent": 90 - 10 * index,
                "location": {"lat": 35.7850 + 0.001 * index, "lng": -78.6750},
            }

    def add_user(self, email, name, password, role, user_id=None) -> dict:
        user = {"id": user_id or str(uuid.uuid4()), "email": email, "name": name, "role": Role(role).value}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def add_restaurant(self, restaurant_id, vendor_id, name, lat, lng) -> dict:
        now = _now()
        restaurant = {
            "id": restaurant_id, "vendorId": vendor_id, "name": name, "description": None,
            "location": {"lat": lat, "lng": lng}, "hours": {"mon-fri": "10:00-20:00"},
            "createdAt": now, "updatedAt": now,
        }
        self.restaurants[restaurant_id] = restaurant
        return restaurant

    def add_menu_item(self, item_id, restaurant_id, name, price, category) -> dict:
        now = _now()
        item = {
            "id": item_id, "restaurantId": restaurant_id, "name": name, "description": None,
            "price": price, "category": category, "available": True, "createdAt": now, "updatedAt": now,
        }
        self.menu_items[item_id] = item
        return item

    def issue_token(self, user: dict) -> str:
        token = f"tok_{secrets.token_hex(16)}"
        self.tokens[token] = user["email"]
        return token

    def user_for_token(self, token: str) -> Optional[dict]:
        email = self.tokens.get(token)
        return self.users.get(email) if email else None

    def create_order(self, request: NewOrderRequest) -> dict:
        now = _now()
        order = {
            "id": str(uuid.uuid4()),
            "userId": request.userId,
            "vendorId": request.vendorId,
            "robotId": None,
            "items": [item.model_dump() for item in request.items],
            "total": round(sum(item.price * item.quantity for item in request.items), 2),
            "deliveryLocation": request.deliveryLocation,
            "deliveryLocationLat": request.deliveryLocationLat,
            "deliveryLocationLng": request.deliveryLocationLng,
            "status": OrderStatus.CREATED.value,
            "createdAt": now,
            "updatedAt": now,
        }
        self.orders[order["id"]] = order
        return order

    def set_status(self, order: dict, status: OrderStatus) -> dict:
        order["status"] = status.value
        order["updatedAt"] = _now()
        if status is OrderStatus.ASSIGNED and order["robotId"] is None:
            idle = next((robot for robot in self.robots.values() if robot["status"] == "IDLE"), None)
            if idle is not None:
                idle["status"] = "ASSIGNED"
                order["robotId"] = idle["id"]
        robot = self.robots.get(order["robotId"]) if order["robotId"] else None
        if robot is not None:
            if status is OrderStatus.EN_ROUTE:
                robot["status"] = "EN_ROUTE"
            elif status.is_terminal:
                robot["status"] = "IDLE"
        return order

    def tracking_info(self, order: dict) -> dict:
        status = OrderStatus(order["status"])
        progress = get_order_progress(status)
        robot = self.robots.get(order["robotId"]) if order["robotId"] else None

        estimated = None
        if status is OrderStatus.EN_ROUTE and robot and order["deliveryLocationLat"] is not None \
                and order["deliveryLocationLng"] is not None:
            # ~111 km per degree, robots travel about 5 km/h
            distance_km = math.hypot(robot["location"]["lat"] - order["deliveryLocationLat"],
                                     robot["location"]["lng"] - order["deliveryLocationLng"]) * 111
            estimated = max(5, math.ceil(distance_km / 5) * 60)
        elif progress.estimatedTimeToNext:
            estimated = progress.estimatedTimeToNext

        return {
            "order": order,
            "progress": progress.model_dump(mode="json"),
            "robot": robot,
            "estimatedDeliveryTime": estimated,
        }


def build_router(store: CampusStore) -> APIRouter:
    """Creates the REST routes bound to one CampusStore."""
    router = APIRouter()

    def current_user(authorization: Optional[str] = Header(None)) -> dict:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="No token provided")
        user = store.user_for_token(authorization[len("Bearer "):])
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return user

    def find_order(order_id: str) -> dict:
        order = store.orders.get(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    # --- Auth ---

    @router.post("/auth/register", status_code=201)
    def register(request: RegisterRequest):
        if request.email in store.users:
            raise HTTPException(status_code=409, detail="Email already registered")
        user = store.add_user(request.email, request.name, request.password, request.role)
        logging.info(f"[Auth] Registered {request.email} ({request.role.value}).")
        return {"user": user, "token": store.issue_token(user)}

    @router.post("/auth/login")
    def login(request: LoginRequest):
        user = store.users.get(request.email)
        if user is None or store.passwords.get(request.email) != request.password:
            raise HTTPException(status_code=401, detail="Invalid email or password")
        return {"user": user, "token": store.issue_token(user)}

    @router.get("/auth/me")
    def me(user: dict = Depends(current_user)):
        return user

    # --- Catalog ---

    @router.get("/restaurants")
    def list_restaurants():
        return list(store.restaurants.values())

    @router.get("/restaurants/{restaurant_id}")
    def get_restaurant(restaurant_id: str):
        restaurant = store.restaurants.get(restaurant_id)
        if restaurant is None:
            raise HTTPException(status_code=404, detail="Restaurant not found")
        return restaurant

    @router.get("/restaurants/{restaurant_id}/menu")
    def get_menu(restaurant_id: str):
        if restaurant_id not in store.restaurants:
            raise HTTPException(status_code=404, detail="Restaurant not found")
        return [item for item in store.menu_items.values() if item["restaurantId"] == restaurant_id]

    # --- Orders ---

    @router.post("/orders", status_code=201)
    def create_order(request: NewOrderRequest, user: dict = Depends(current_user)):
        if request.userId != user["id"]:
            raise HTTPException(status_code=403, detail="Cannot order for another user")
        order = store.create_order(request)
        logging.info(f"[Orders] Order {order['id']} created for {user['email']}.")
        return order

    @router.get("/orders")
    def list_orders(user: dict = Depends(current_user)):
        orders: List[dict] = list(store.orders.values())
        if user["role"] == Role.VENDOR.value:
            orders = [order for order in orders if order["vendorId"] == user["id"]]
        elif user["role"] == Role.STUDENT.value:
            orders = [order for order in orders if order["userId"] == user["id"]]
        return sorted(orders, key=lambda order: order["createdAt"], reverse=True)

    @router.get("/orders/{order_id}")
    def get_order(order_id: str, user: dict = Depends(current_user)):
        return find_order(order_id)

    @router.get("/orders/{order_id}/tracking")
    def get_tracking(order_id: str, user: dict = Depends(current_user)):
        return store.tracking_info(find_order(order_id))

    @router.patch("/orders/{order_id}/status")
    def update_status(order_id: str, request: StatusUpdateRequest, user: dict = Depends(current_user)):
        order = find_order(order_id)
        if OrderStatus(order["status"]).is_terminal:
            raise HTTPException(status_code=400, detail=f"Order is already {order['status']}")
        logging.info(f"[Orders] Order {order_id}: {order['status']} -> {request.status.value}.")
        return store.set_status(order, request.status)

    return router
