"""
cart.py — Cart Store

Owns the pending order's line items and the single-restaurant constraint.

Behavior:
    • All lines of a non-empty cart belong to one restaurant.
    • Adding an item from another restaurant is a two-phase operation:
      add_item() returns AddResult.CONFLICT and the caller settles it with
      resolve_conflict(accept).
    • Every mutation persists the full snapshot before returning.
    • Malformed persisted data is discarded and the cart starts empty.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .config import CART_STORAGE_KEY
from .events import Observable
from .models import CartLine, CartSnapshot, MenuItem
from .storage import KeyValueStorage

log = logging.getLogger(__name__)


class AddResult(str, Enum):
    ADDED = "ADDED"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class PendingConflict:
    """
    An add_item() call waiting for the caller's replace-or-keep decision.

    Attributes:
        item (MenuItem): The item the caller tried to add.
        restaurant_id (str): Restaurant of that item.
        quantity (int): Requested quantity.
        current_restaurant_id (str): Restaurant the cart is bound to.
    """
    item: MenuItem
    restaurant_id: str
    quantity: int
    current_restaurant_id: str


def _validate_snapshot(snapshot: CartSnapshot):
    restaurant_ids = {line.restaurantId for line in snapshot.lines}
    if len(restaurant_ids) > 1:
        raise ValueError(f"cart lines span several restaurants: {sorted(restaurant_ids)}")
    if snapshot.lines and snapshot.restaurantId not in (None, *restaurant_ids):
        raise ValueError("cart restaurant binding does not match its lines")
    item_ids = [line.item.id for line in snapshot.lines]
    if len(item_ids) != len(set(item_ids)):
        raise ValueError("cart contains duplicate lines for one menu item")


class CartStore(Observable):
    """
    Single-restaurant shopping cart persisted to durable storage.

    Args:
        storage (KeyValueStorage): Durable storage; the store writes only its own key.
        storage_key (str): Key holding the persisted snapshot.
    """

    def __init__(self, storage: KeyValueStorage, storage_key: str = CART_STORAGE_KEY):
        super().__init__()
        self._storage = storage
        self._storage_key = storage_key
        self._lines: List[CartLine] = []
        self._restaurant_id: Optional[str] = None
        self._pending_conflict: Optional[PendingConflict] = None
        self._load()

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines)

    @property
    def restaurant_id(self) -> Optional[str]:
        return self._restaurant_id

    @property
    def pending_conflict(self) -> Optional[PendingConflict]:
        return self._pending_conflict

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def line_for(self, item_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.item.id == item_id:
                return line
        return None

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(lines=list(self._lines), restaurantId=self._restaurant_id)

    def total(self) -> float:
        """Sum of unit price times quantity over all lines, rounded to cents."""
        return round(sum(line.line_total for line in self._lines), 2)

    def count(self) -> int:
        return sum(line.quantity for line in self._lines)

    # --- Mutations ---

    def add_item(self, item: MenuItem, restaurant_id: str, quantity: int = 1) -> AddResult:
        """
        Adds `quantity` units of `item` from `restaurant_id`.

        An item already in the cart has its quantity incremented. If the cart is
        bound to a different restaurant nothing changes yet: the request is kept
        as `pending_conflict` and AddResult.CONFLICT is returned.

        Raises:
            ValueError: If quantity is smaller than 1.
        """
        if quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {quantity}")

        if self._restaurant_id is not None and self._restaurant_id != restaurant_id:
            self._pending_conflict = PendingConflict(
                item=item,
                restaurant_id=restaurant_id,
                quantity=quantity,
                current_restaurant_id=self._restaurant_id,
            )
            log.info(f"Cart bound to restaurant {self._restaurant_id}; "
                     f"adding {item.id} from {restaurant_id} needs confirmation.")
            self._notify()
            return AddResult.CONFLICT

        lines = list(self._lines)
        for index, line in enumerate(lines):
            if line.item.id == item.id:
                lines[index] = line.model_copy(update={"quantity": line.quantity + quantity})
                break
        else:
            lines.append(CartLine(item=item, quantity=quantity, restaurantId=restaurant_id))

        self._commit(lines, restaurant_id)
        return AddResult.ADDED

    def resolve_conflict(self, accept: bool) -> bool:
        """
        Settles the pending conflicting add.

        Args:
            accept (bool): True clears the cart and reseeds it with the pending
                line; False keeps the cart as it is.

        Returns:
            bool: True if the cart changed. False when declined or when there is
            no pending conflict.
        """
        conflict = self._pending_conflict
        if conflict is None:
            return False

        if not accept:
            log.info(f"Replacement declined; cart stays with restaurant {conflict.current_restaurant_id}.")
            self._pending_conflict = None
            self._notify()
            return False

        log.info(f"Cart replaced: restaurant {conflict.current_restaurant_id} -> {conflict.restaurant_id}.")
        line = CartLine(item=conflict.item, quantity=conflict.quantity, restaurantId=conflict.restaurant_id)
        self._commit([line], conflict.restaurant_id)
        return True

    def remove_item(self, item_id: str):
        lines = [line for line in self._lines if line.item.id != item_id]
        self._commit(lines, self._restaurant_id if lines else None)

    def set_quantity(self, item_id: str, quantity: int):
        """Replaces a line's quantity in place; quantity <= 0 removes the line."""
        if quantity <= 0:
            self.remove_item(item_id)
            return
        lines = [
            line.model_copy(update={"quantity": quantity}) if line.item.id == item_id else line
            for line in self._lines
        ]
        self._commit(lines, self._restaurant_id)

    def clear(self):
        self._commit([], None)

    # --- Persistence ---

    def _commit(self, lines: List[CartLine], restaurant_id: Optional[str]):
        # Persist first so a storage failure leaves the in-memory cart unchanged
        snapshot = CartSnapshot(lines=lines, restaurantId=restaurant_id if lines else None)
        self._storage.set_item(self._storage_key, snapshot.model_dump_json())
        self._lines = list(snapshot.lines)
        self._restaurant_id = snapshot.restaurantId
        self._pending_conflict = None
        self._notify()

    def _load(self):
        raw = self._storage.get_item(self._storage_key)
        if raw is None:
            return
        try:
            snapshot = CartSnapshot.model_validate_json(raw)
            _validate_snapshot(snapshot)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError as well
            log.warning(f"Discarding malformed persisted cart: {e}")
            return
        self._lines = list(snapshot.lines)
        if self._lines:
            self._restaurant_id = snapshot.restaurantId or self._lines[0].restaurantId
        log.info(f"Cart restored with {len(self._lines)} line(s).")
