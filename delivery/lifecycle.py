"""
Order lifecycle: pending -> collecting -> en_route -> completed, with
cancellation (a hard delete) allowed only while pending.

The document store is the only source of truth. Nothing here caches an
order between calls; every mutation is a conditional write so that two
actors racing on the same order cannot both win.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from .accounts import is_valid_pin
from .config import ServiceConfig
from .errors import InvalidTransition, NotFound, PinMismatch, Unauthorized, ValidationError
from .geo import quote as quote_trip
from .models import ACTIVE_STATUSES, GeoPoint, Order, OrderStatus, Store
from .store import DocumentStore, ORDERS, STORES

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"collecting", "cancelled"}),
    "collecting": frozenset({"en_route"}),
    "en_route": frozenset({"completed"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

RECEIPT_RE = re.compile(r"^[0-9]{10}$")


def can_transition(src: str, dst: str) -> bool:
    return dst in TRANSITIONS.get(src, frozenset())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_order_number() -> str:
    return uuid.uuid4().hex[:8].upper()


class OrderLifecycle:
    def __init__(self, store: DocumentStore, cfg: Optional[ServiceConfig] = None, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.cfg = cfg or ServiceConfig()
        self.clock = clock

    # ---- reads ----
    async def get(self, order_id: str) -> Order:
        doc = await self.store.get(ORDERS, order_id)
        if doc is None:
            raise NotFound(f"order {order_id} not found")
        return Order.from_doc(order_id, doc)

    async def get_store(self, name: str) -> Store:
        doc = await self.store.get(STORES, name)
        if doc is None:
            raise NotFound(f"store {name!r} not found")
        return Store.from_doc(doc)

    async def quote(self, store_name: str, location: GeoPoint) -> Tuple[float, int]:
        """Distance in miles from the store to `location` and the delivery price."""
        store = await self.get_store(store_name)
        return quote_trip(
            store.location,
            location,
            rate=self.cfg.rate_per_mile,
            radius=self.cfg.earth_radius_miles,
        )

    async def _orders(self, **kw) -> List[Order]:
        rows = await self.store.query(ORDERS, **kw)
        return [Order.from_doc(doc_id, doc) for doc_id, doc in rows]

    async def available_orders(self) -> List[Order]:
        return await self._orders(equals={"status": "pending"}, order_by="timestamp")

    async def active_order(self, customer_id: str) -> Optional[Order]:
        orders = await self._orders(
            equals={"userId": customer_id},
            within={"status": ACTIVE_STATUSES},
            limit=1,
        )
        return orders[0] if orders else None

    async def order_history(self, customer_id: str, limit: Optional[int] = None) -> List[Order]:
        return await self._orders(
            equals={"userId": customer_id},
            order_by="timestamp",
            descending=True,
            limit=limit,
        )

    async def recent_orders(self, customer_id: str) -> List[Order]:
        return await self.order_history(customer_id, limit=self.cfg.recent_orders_limit)

    async def delivery_history(self, driver_id: str) -> List[Order]:
        return await self._orders(
            equals={"status": "completed", "driverId": driver_id},
            order_by="timestamp",
            descending=True,
        )

    # ---- mutations ----
    @staticmethod
    def validate_request(receipt: str, note: str) -> str:
        """Checks the customer-entered fields; returns the trimmed receipt number."""
        receipt = (receipt or "").strip()
        if not RECEIPT_RE.match(receipt):
            raise ValidationError("receipt number must be exactly 10 digits")
        if not (note or "").strip():
            raise ValidationError("note must not be empty")
        return receipt

    async def create(
        self,
        customer_id: str,
        store: str,
        receipt: str,
        note: str,
        location: GeoPoint,
        price: int,
        pin: str,
        address: str = "",
        customer_name: str = "",
    ) -> Order:
        receipt = self.validate_request(receipt, note)
        if not is_valid_pin(pin or ""):
            raise ValidationError("delivery PIN must be exactly 4 digits")
        if price < 0:
            raise ValidationError("price must not be negative")

        order = Order(
            order_id="",
            customer_id=customer_id,
            customer_name=customer_name,
            store=store,
            receipt_number=receipt,
            note=note.strip(),
            location=location,
            address=address,
            price=int(price),
            delivery_pin=pin,
            created_at=self.clock(),
            order_number=_new_order_number(),
        )
        order.order_id = await self.store.add(ORDERS, order.to_doc())
        logger.info(f"Order {order.order_id} ({order.order_number}) created by {customer_id} at {store}")
        return order

    async def accept(self, order_id: str, driver_id: str) -> Order:
        doc = await self.store.update_where(
            ORDERS,
            order_id,
            expected={"status": "pending"},
            changes={"status": "collecting", "driverId": driver_id},
        )
        if doc is None:
            raise InvalidTransition(f"order {order_id} is no longer pending")
        logger.info(f"Order {order_id} accepted by driver {driver_id}")
        return Order.from_doc(order_id, doc)

    async def advance_to_en_route(self, order_id: str, driver_id: str) -> Order:
        doc = await self.store.update_where(
            ORDERS,
            order_id,
            expected={"status": "collecting", "driverId": driver_id},
            changes={"status": "en_route"},
        )
        if doc is None:
            current = await self.get(order_id)
            self._check_driver(current, driver_id)
            raise InvalidTransition(f"order {order_id} is {current.status}, not collecting")
        logger.info(f"Order {order_id} collected by driver {driver_id}")
        return Order.from_doc(order_id, doc)

    async def verify_and_complete(self, order_id: str, driver_id: str, entered_pin: str) -> Order:
        pin = (entered_pin or "").strip()
        if len(pin) != 4:
            raise ValidationError("please enter a valid 4-digit PIN")

        order = await self.get(order_id)
        self._check_driver(order, driver_id)
        if order.status != "en_route":
            raise InvalidTransition(f"order {order_id} is {order.status}, not en_route")
        if pin != order.delivery_pin:
            logger.info(f"Incorrect PIN for order {order_id}")
            raise PinMismatch("incorrect PIN, try again")

        doc = await self.store.update_where(
            ORDERS,
            order_id,
            expected={"status": "en_route", "driverId": driver_id},
            changes={"status": "completed", "completedAt": self.clock()},
        )
        if doc is None:
            raise InvalidTransition(f"order {order_id} changed while verifying")
        logger.info(f"Order {order_id} delivered by driver {driver_id}")
        return Order.from_doc(order_id, doc)

    async def cancel(self, order_id: str, customer_id: str) -> Order:
        order = await self.get(order_id)
        if order.customer_id != customer_id:
            raise Unauthorized(f"order {order_id} does not belong to {customer_id}")
        if order.status != "pending":
            raise InvalidTransition(f"order {order_id} is {order.status} and can no longer be cancelled")

        doc = await self.store.delete_where(ORDERS, order_id, expected={"status": "pending", "userId": customer_id})
        if doc is None:
            # a driver claimed it between the read and the delete
            raise InvalidTransition(f"order {order_id} is no longer pending")
        logger.info(f"Order {order_id} cancelled by {customer_id}")
        cancelled = Order.from_doc(order_id, doc)
        cancelled.status = "cancelled"
        return cancelled

    @staticmethod
    def _check_driver(order: Order, driver_id: str) -> None:
        if order.driver_id is not None and order.driver_id != driver_id:
            raise Unauthorized(f"order {order.order_id} is assigned to another driver")


def leg_for(status: OrderStatus) -> Optional[str]:
    """Which leg a driver needs on screen for a given stage."""
    if status == "collecting":
        return "to_store"
    if status == "en_route":
        return "to_customer"
    return None
