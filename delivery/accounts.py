from __future__ import annotations

import logging
import random
from typing import Any, Dict, Literal, Optional

from .errors import NotFound, ValidationError
from .store import DocumentStore, USERS

logger = logging.getLogger(__name__)


Role = Literal["customer", "driver"]


def generate_pin(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return str(rng.randrange(1000, 9999))


def is_valid_pin(pin: str) -> bool:
    return len(pin) == 4 and pin.isascii() and pin.isdigit()


async def register(
    store: DocumentStore,
    user_id: str,
    full_name: str,
    email: str,
    role: Role = "customer",
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    if not user_id.strip():
        raise ValidationError("user id is required")
    if not full_name.strip():
        raise ValidationError("full name is required")

    doc = {"fullName": full_name.strip(), "email": email.strip(), "role": role}
    if role == "customer":
        doc["deliveryPin"] = generate_pin(rng)
    await store.put(USERS, user_id, doc)
    logger.info(f"Registered {role} {user_id}")
    return doc


async def get_user(store: DocumentStore, user_id: str) -> Dict[str, Any]:
    doc = await store.get(USERS, user_id)
    if doc is None:
        raise NotFound(f"user {user_id} not found")
    return doc


async def delivery_pin(store: DocumentStore, user_id: str, default: str = "0000") -> str:
    doc = await store.get(USERS, user_id)
    if doc is None:
        return default
    return doc.get("deliveryPin") or default
