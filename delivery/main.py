from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import logging
import os
from typing import Any, Dict, Optional

from . import accounts
from .config import ServiceConfig
from .directions import DirectionsProvider, Transport, make_directions
from .errors import (
    DecodeError,
    DeliveryError,
    InvalidTransition,
    NoRoute,
    NotFound,
    PinMismatch,
    RouteError,
    Unauthorized,
    ValidationError,
)
from .lifecycle import OrderLifecycle
from .loader import load_stores, seed_stores
from .models import GeoPoint, Order, Route, Store
from .notifications import BroadcastNotificationSink, NewOrderWatcher, OrderStatusWatcher
from .sessions import CustomerTracker, DriverSession
from .store import DocumentStore, MemoryDocumentStore, STORES, USERS
from .tracking import AnimationHandle
from .ws_manager import WSManager

from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

app = FastAPI(title="Delivery Backend", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Services:
    cfg: ServiceConfig
    store: DocumentStore
    lifecycle: OrderLifecycle
    directions: DirectionsProvider
    ws: WSManager
    drivers: Dict[str, DriverSession] = field(default_factory=dict)

    def driver(self, driver_id: str) -> DriverSession:
        """The driver's session, created on first use. It owns the driver's map animation."""
        session = self.drivers.get(driver_id)
        if session is None:
            session = DriverSession(self.lifecycle, self.directions, driver_id, cfg=self.cfg)
            self.drivers[driver_id] = session
        return session

    def close(self) -> None:
        for session in self.drivers.values():
            session.close()
        self.drivers.clear()

    @classmethod
    def build(cls, cfg: ServiceConfig, store: Optional[DocumentStore] = None, transport: Optional[Transport] = None) -> "Services":
        store = store or MemoryDocumentStore()
        return cls(
            cfg=cfg,
            store=store,
            lifecycle=OrderLifecycle(store, cfg),
            directions=make_directions(cfg, transport=transport),
            ws=WSManager(),
        )


services = Services.build(ServiceConfig.from_env())

DRIVERS_CHANNEL = "drivers"

_driver_watcher: Optional[NewOrderWatcher] = None


# ---- request bodies ----
class PointBody(BaseModel):
    lat: float
    lng: float

    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)


class StoreBody(BaseModel):
    latitude: float
    longitude: float


class UserBody(BaseModel):
    user_id: str
    full_name: str
    email: str = ""
    role: accounts.Role = "customer"


class CreateOrderBody(BaseModel):
    customer_id: str
    store: str
    receipt_number: str
    note: str
    location: PointBody
    address: str = ""


class DriverBody(BaseModel):
    driver_id: str


class CompleteBody(BaseModel):
    driver_id: str
    pin: str


class RouteBody(BaseModel):
    origin: PointBody
    destination: PointBody


# ---- serialisation ----
def _ts(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _order_json(o: Order) -> Dict[str, Any]:
    # the delivery PIN never leaves the server in order payloads
    return {
        "order_id": o.order_id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "customer_name": o.customer_name,
        "store": o.store,
        "receipt_number": o.receipt_number,
        "note": o.note,
        "location": {"lat": o.location.lat, "lng": o.location.lng},
        "address": o.address,
        "price": o.price,
        "status": o.status,
        "driver_id": o.driver_id,
        "created_at": _ts(o.created_at),
        "completed_at": _ts(o.completed_at),
    }


def _route_json(r: Optional[Route]) -> Optional[Dict[str, Any]]:
    if r is None:
        return None
    return {
        "leg": r.leg,
        "origin": {"lat": r.origin.lat, "lng": r.origin.lng},
        "destination": {"lat": r.destination.lat, "lng": r.destination.lng},
        "points": [[p.lat, p.lng] for p in r.points],
    }


def _status_for(e: DeliveryError) -> int:
    if isinstance(e, ValidationError):
        return 400
    if isinstance(e, Unauthorized):
        return 403
    if isinstance(e, (NotFound, NoRoute)):
        return 404
    if isinstance(e, InvalidTransition):
        return 409
    if isinstance(e, PinMismatch):
        return 422
    if isinstance(e, (RouteError, DecodeError)):
        return 502
    return 500


@app.exception_handler(DeliveryError)
async def _delivery_error(request: Request, e: DeliveryError):
    return JSONResponse(status_code=_status_for(e), content={"detail": str(e), "error": e.__class__.__name__})


# ---- routes ----
@app.get("/health")
def health():
    return {"ok": True, "version": app.version, "directions": services.cfg.directions_mode}


@app.get("/stores")
async def list_stores():
    rows = await services.store.query(STORES, order_by="name")
    return [Store.from_doc(doc).to_doc() for _, doc in rows]


@app.put("/stores/{name}")
async def put_store(name: str, body: StoreBody):
    s = Store(name=name, lat=body.latitude, lng=body.longitude)
    await services.store.put(STORES, name, s.to_doc())
    return s.to_doc()


@app.post("/users")
async def register_user(body: UserBody):
    doc = await accounts.register(services.store, body.user_id, body.full_name, body.email, role=body.role)
    return {"user_id": body.user_id, **doc}


@app.get("/users/{user_id}")
async def get_user(user_id: str):
    return {"user_id": user_id, **(await accounts.get_user(services.store, user_id))}


@app.get("/quote")
async def get_quote(store: str, lat: float, lng: float):
    miles, price = await services.lifecycle.quote(store, GeoPoint(lat, lng))
    return {"store": store, "distance_miles": round(miles, 2), "price": price}


@app.post("/orders")
async def create_order(body: CreateOrderBody):
    lc = services.lifecycle
    lc.validate_request(body.receipt_number, body.note)
    location = body.location.point()
    _, price = await lc.quote(body.store, location)
    pin = await accounts.delivery_pin(services.store, body.customer_id, default=services.cfg.default_pin)
    user = await services.store.get(USERS, body.customer_id) or {}
    order = await lc.create(
        customer_id=body.customer_id,
        store=body.store,
        receipt=body.receipt_number,
        note=body.note,
        location=location,
        price=price,
        pin=pin,
        address=body.address,
        customer_name=user.get("fullName", ""),
    )
    return _order_json(order)


@app.get("/orders/available")
async def available_orders():
    return [_order_json(o) for o in await services.lifecycle.available_orders()]


@app.get("/orders/{order_id}")
async def get_order(order_id: str):
    return _order_json(await services.lifecycle.get(order_id))


def _driver_step_json(o: Order, session: DriverSession) -> Dict[str, Any]:
    # route is the leg the driver's map now animates, None if it could not be fetched
    return {**_order_json(o), "route": _route_json(session.route)}


@app.post("/orders/{order_id}/accept")
async def accept_order(order_id: str, body: DriverBody):
    session = services.driver(body.driver_id)
    return _driver_step_json(await session.accept(order_id), session)


@app.post("/orders/{order_id}/collect")
async def collect_order(order_id: str, body: DriverBody):
    session = services.driver(body.driver_id)
    return _driver_step_json(await session.mark_collected(order_id), session)


@app.post("/orders/{order_id}/complete")
async def complete_order(order_id: str, body: CompleteBody):
    session = services.driver(body.driver_id)
    return _driver_step_json(await session.complete(body.pin, order_id), session)


@app.get("/drivers/{driver_id}/position")
async def driver_position(driver_id: str):
    session = services.driver(driver_id)
    pos = session.tracking.position
    return {
        "order_id": session.order_id,
        "route": _route_json(session.route),
        "position": {"lat": pos.lat, "lng": pos.lng} if pos is not None else None,
    }


@app.delete("/orders/{order_id}")
async def cancel_order(order_id: str, customer_id: str):
    return _order_json(await services.lifecycle.cancel(order_id, customer_id))


@app.get("/customers/{customer_id}/orders")
async def customer_orders(customer_id: str, limit: Optional[int] = None):
    return [_order_json(o) for o in await services.lifecycle.order_history(customer_id, limit=limit)]


@app.get("/customers/{customer_id}/orders/active")
async def customer_active_order(customer_id: str):
    order = await services.lifecycle.active_order(customer_id)
    if order is None:
        raise HTTPException(status_code=404, detail="No active order to track")
    return _order_json(order)


@app.get("/drivers/{driver_id}/deliveries")
async def driver_deliveries(driver_id: str):
    orders = await services.lifecycle.delivery_history(driver_id)
    return {
        "deliveries": [_order_json(o) for o in orders],
        "earned": sum(o.price for o in orders),
    }


@app.post("/routes")
async def fetch_route(body: RouteBody):
    route = await services.directions.fetch_route(body.origin.point(), body.destination.point())
    return _route_json(route)


# ---- WebSockets ----
@app.websocket("/ws/track/{customer_id}")
async def ws_track(ws: WebSocket, customer_id: str):
    """
    Streams the simulated driver position for the customer's active order.
    Any text message from the client triggers a refresh.
    """
    await ws.accept()
    tracker = CustomerTracker(services.lifecycle, services.directions, customer_id, cfg=services.cfg)
    request: Optional[asyncio.Task] = None
    try:
        while True:
            order = await tracker.refresh()
            if order is None:
                await ws.send_json({"type": "no_order", "detail": "No active order to track"})
                await ws.receive_text()
                continue

            await ws.send_json({"type": "order", "order": _order_json(order), "route": _route_json(tracker.route)})
            stream = asyncio.create_task(_stream_positions(ws, tracker.tracking.current))
            request = asyncio.create_task(ws.receive_text())
            done, _ = await asyncio.wait({stream, request}, return_when=asyncio.FIRST_COMPLETED)
            if request in done:
                # refresh asked for mid-route: drop the rest of this route
                stream.cancel()
                try:
                    await stream
                except asyncio.CancelledError:
                    pass
            else:
                stream.result()
            await request
            request = None
    except WebSocketDisconnect:
        pass
    finally:
        if request is not None:
            request.cancel()
        tracker.close()


async def _stream_positions(ws: WebSocket, handle: Optional[AnimationHandle]):
    if handle is None or handle.route.empty:
        return
    start = handle.route.points[0]
    await ws.send_json({"type": "position", "index": 0, "lat": start.lat, "lng": start.lng})
    i = 0
    async for pos in handle:
        i += 1
        await ws.send_json({"type": "position", "index": i, "lat": pos.lat, "lng": pos.lng})
    if not handle.cancelled:
        await ws.send_json({"type": "arrived"})


async def _keepalive(ws: WebSocket):
    while True:
        try:
            await asyncio.wait_for(ws.receive_text(), timeout=30)
        except asyncio.TimeoutError:
            await ws.send_json({"type": "ping"})


@app.websocket("/ws/notifications/drivers")
async def ws_driver_notifications(ws: WebSocket):
    await services.ws.connect(DRIVERS_CHANNEL, ws)
    try:
        await ws.send_json({"type": "subscribed", "channel": DRIVERS_CHANNEL})
        await _keepalive(ws)
    except WebSocketDisconnect:
        pass
    finally:
        await services.ws.disconnect(DRIVERS_CHANNEL, ws)


@app.websocket("/ws/notifications/customers/{customer_id}")
async def ws_customer_notifications(ws: WebSocket, customer_id: str):
    channel = f"customer:{customer_id}"
    await services.ws.connect(channel, ws)
    watcher = OrderStatusWatcher(services.store, BroadcastNotificationSink(services.ws, channel), customer_id).start()
    try:
        await ws.send_json({"type": "subscribed", "channel": channel})
        await _keepalive(ws)
    except WebSocketDisconnect:
        pass
    finally:
        await watcher.stop()
        await services.ws.disconnect(channel, ws)


@app.on_event("startup")
async def _startup():
    global _driver_watcher
    cfg = services.cfg
    if cfg.stores_csv and os.path.exists(cfg.stores_csv):
        n = await seed_stores(services.store, load_stores(cfg.stores_csv))
        logger.info(f"Seeded {n} stores from {cfg.stores_csv}")

    sink = BroadcastNotificationSink(services.ws, DRIVERS_CHANNEL)
    _driver_watcher = NewOrderWatcher(services.store, sink, session_start=datetime.now(timezone.utc)).start()


@app.on_event("shutdown")
async def _shutdown():
    global _driver_watcher
    if _driver_watcher is not None:
        await _driver_watcher.stop()
        _driver_watcher = None
    services.close()
