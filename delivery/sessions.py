"""
Driver and customer flows on top of the lifecycle manager.

Each step awaits the order mutation first and only then fetches the route for
the new leg, so a route is never drawn for a transition that did not happen.
Route failures after a successful transition are logged and dropped; the
order's state stays authoritative.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Set

from .config import ServiceConfig
from .directions import DirectionsProvider
from .errors import DecodeError, RouteError
from .lifecycle import OrderLifecycle, leg_for
from .models import GeoPoint, Leg, Order, Route
from .tracking import TickCallback, TrackingContext

logger = logging.getLogger(__name__)


async def _route_or_none(directions: DirectionsProvider, origin: GeoPoint, destination: GeoPoint, leg: Leg) -> Optional[Route]:
    try:
        return await directions.fetch_route(origin, destination, leg=leg)
    except RouteError as e:
        logger.warning(f"No {leg} route: {e}")
    except DecodeError as e:
        logger.warning(f"Undecodable {leg} route: {e}")
    return None


class DriverSession:
    def __init__(
        self,
        lifecycle: OrderLifecycle,
        directions: DirectionsProvider,
        driver_id: str,
        home: Optional[GeoPoint] = None,
        tracking: Optional[TrackingContext] = None,
        cfg: Optional[ServiceConfig] = None,
        on_tick: Optional[TickCallback] = None,
    ):
        self.lifecycle = lifecycle
        self.directions = directions
        self.driver_id = driver_id
        self.cfg = cfg or lifecycle.cfg
        self.home = home or GeoPoint(*self.cfg.driver_home)
        self.tracking = tracking or TrackingContext()
        self.on_tick = on_tick

        self.declined: Set[str] = set()
        self.order_id: Optional[str] = None
        self.route: Optional[Route] = None

    async def available_orders(self) -> List[Order]:
        orders = await self.lifecycle.available_orders()
        return [o for o in orders if o.order_id not in self.declined]

    def decline(self, order_id: str) -> None:
        self.declined.add(order_id)

    async def accept(self, order_id: str) -> Order:
        order = await self.lifecycle.accept(order_id, self.driver_id)
        self.order_id = order_id
        await self._show_leg(order)
        return order

    async def mark_collected(self, order_id: Optional[str] = None) -> Order:
        order_id = order_id or self._current()
        order = await self.lifecycle.advance_to_en_route(order_id, self.driver_id)
        self.order_id = order_id
        await self._show_leg(order)
        return order

    async def complete(self, pin: str, order_id: Optional[str] = None) -> Order:
        order = await self.lifecycle.verify_and_complete(order_id or self._current(), self.driver_id, pin)
        self.tracking.close()
        self.route = None
        self.order_id = None
        return order

    def close(self) -> None:
        self.tracking.close()

    def _current(self) -> str:
        if self.order_id is None:
            raise RuntimeError("no order in progress for this driver")
        return self.order_id

    async def _show_leg(self, order: Order) -> None:
        leg = leg_for(order.status)
        if leg is None:
            return
        store = await self.lifecycle.get_store(order.store)
        if leg == "to_store":
            origin, destination = self.home, store.location
        else:
            origin, destination = store.location, order.location

        # a stale leg must not keep moving while the new one is fetched
        self.tracking.close()
        self.route = await _route_or_none(self.directions, origin, destination, leg)
        if self.route is not None:
            self.tracking.start(self.route, self.cfg.driver_track_interval_ms, on_tick=self.on_tick)


class CustomerTracker:
    """Follows the customer's order that is currently out for delivery."""

    def __init__(
        self,
        lifecycle: OrderLifecycle,
        directions: DirectionsProvider,
        customer_id: str,
        tracking: Optional[TrackingContext] = None,
        cfg: Optional[ServiceConfig] = None,
        on_tick: Optional[TickCallback] = None,
    ):
        self.lifecycle = lifecycle
        self.directions = directions
        self.customer_id = customer_id
        self.cfg = cfg or lifecycle.cfg
        self.tracking = tracking or TrackingContext()
        self.on_tick = on_tick

        self.order: Optional[Order] = None
        self.route: Optional[Route] = None

    async def refresh(self) -> Optional[Order]:
        self.tracking.close()
        self.route = None
        self.order = await self.lifecycle.active_order(self.customer_id)
        if self.order is None:
            return None

        store = await self.lifecycle.get_store(self.order.store)
        self.route = await _route_or_none(self.directions, store.location, self.order.location, "to_customer")
        if self.route is not None:
            self.tracking.start(self.route, self.cfg.customer_track_interval_ms, on_tick=self.on_tick)
        return self.order

    def close(self) -> None:
        self.tracking.close()
