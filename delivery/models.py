from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, List, Dict, Any


OrderStatus = Literal["pending", "collecting", "en_route", "completed", "cancelled"]
Leg = Literal["to_store", "to_customer"]

ORDER_STATUSES = ("pending", "collecting", "en_route", "completed", "cancelled")
ACTIVE_STATUSES = ("collecting", "en_route")

# shown to customers in order updates
STATUS_LABELS: Dict[str, str] = {
    "pending": "Pending",
    "collecting": "Driver collecting goods",
    "en_route": "Driver has collected goods and is on his way",
    "completed": "Order completed",
    "cancelled": "Cancelled",
}


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def as_tuple(self):
        return (self.lat, self.lng)

    def to_doc(self) -> Dict[str, float]:
        return {"latitude": self.lat, "longitude": self.lng}

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "GeoPoint":
        return cls(lat=float(doc["latitude"]), lng=float(doc["longitude"]))


@dataclass
class Store:
    name: str
    lat: float
    lng: float

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)

    def to_doc(self) -> Dict[str, Any]:
        return {"name": self.name, "latitude": self.lat, "longitude": self.lng}

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "Store":
        return cls(name=doc["name"], lat=float(doc["latitude"]), lng=float(doc["longitude"]))


@dataclass
class Order:
    order_id: str
    customer_id: str
    store: str
    receipt_number: str
    note: str
    location: GeoPoint
    price: int
    delivery_pin: str
    created_at: datetime

    address: str = ""
    customer_name: str = ""
    order_number: str = ""

    # lifecycle
    status: OrderStatus = "pending"
    driver_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_doc(self) -> Dict[str, Any]:
        """Document-store representation (without the id, which is the key)."""
        return {
            "userId": self.customer_id,
            "userName": self.customer_name,
            "store": self.store,
            "receiptNumber": self.receipt_number,
            "note": self.note,
            "location": self.location.to_doc(),
            "address": self.address,
            "price": self.price,
            "deliveryPin": self.delivery_pin,
            "timestamp": self.created_at,
            "orderNumber": self.order_number,
            "status": self.status,
            "driverId": self.driver_id,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_doc(cls, order_id: str, doc: Dict[str, Any]) -> "Order":
        return cls(
            order_id=order_id,
            customer_id=doc["userId"],
            customer_name=doc.get("userName", ""),
            store=doc["store"],
            receipt_number=doc["receiptNumber"],
            note=doc.get("note", ""),
            location=GeoPoint.from_doc(doc["location"]),
            address=doc.get("address", ""),
            price=int(doc.get("price", 0)),
            delivery_pin=doc.get("deliveryPin", ""),
            created_at=doc["timestamp"],
            order_number=doc.get("orderNumber", ""),
            status=doc.get("status", "pending"),
            driver_id=doc.get("driverId"),
            completed_at=doc.get("completedAt"),
        )


@dataclass
class Route:
    origin: GeoPoint
    destination: GeoPoint
    points: List[GeoPoint] = field(default_factory=list)
    leg: Optional[Leg] = None

    @property
    def empty(self) -> bool:
        return not self.points

    def __len__(self) -> int:
        return len(self.points)
