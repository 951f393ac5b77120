"""
Order alerts. Two watchers read the orders change feed:

- NewOrderWatcher tells drivers about orders placed after their session began.
- OrderStatusWatcher tells a customer when their latest order leaves pending
  or moves on to a later stage.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .models import STATUS_LABELS
from .store import Change, DocumentStore, ORDERS, Subscription
from .ws_manager import WSManager

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    title: str
    body: str
    audience: str

    def to_json(self) -> Dict[str, Any]:
        return {"type": "notification", "title": self.title, "body": self.body, "audience": self.audience}


class NotificationSink:
    async def notify(self, note: Notification) -> None:
        raise NotImplementedError


class LogNotificationSink(NotificationSink):
    def __init__(self) -> None:
        self.sent: List[Notification] = []

    async def notify(self, note: Notification) -> None:
        self.sent.append(note)
        logger.info(f"[{note.audience}] {note.title}: {note.body}")


class BroadcastNotificationSink(NotificationSink):
    def __init__(self, manager: WSManager, channel: str = "notifications"):
        self.manager = manager
        self.channel = channel

    async def notify(self, note: Notification) -> None:
        await self.manager.broadcast(self.channel, note.to_json())


class _Watcher:
    def __init__(self, store: DocumentStore, sink: NotificationSink):
        self.store = store
        self.sink = sink
        self._sub: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    def _subscribe(self) -> Subscription:
        raise NotImplementedError

    async def handle(self, change: Change) -> None:
        raise NotImplementedError

    def start(self) -> "_Watcher":
        if self._task is None:
            self._sub = self._subscribe()
            self._task = asyncio.create_task(self._loop())
        return self

    async def drain(self) -> None:
        """Process whatever is already queued without waiting for more."""
        if self._sub is None:
            self._sub = self._subscribe()
        for change in self._sub.pending():
            await self.handle(change)

    async def _loop(self) -> None:
        async for change in self._sub:
            await self.handle(change)

    async def stop(self) -> None:
        if self._sub is not None:
            self._sub.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None


class NewOrderWatcher(_Watcher):
    def __init__(self, store: DocumentStore, sink: NotificationSink, session_start: datetime, audience: str = "drivers"):
        super().__init__(store, sink)
        self.session_start = session_start
        self.audience = audience
        self.notified: Set[str] = set()

    def _subscribe(self) -> Subscription:
        return self.store.subscribe(ORDERS)

    async def handle(self, change: Change) -> None:
        if change.kind != "added" or change.doc_id in self.notified:
            return
        ts = change.doc.get("timestamp")
        # the first snapshot replays old orders; only react to fresh ones
        if ts is None or ts <= self.session_start:
            return
        self.notified.add(change.doc_id)
        await self.sink.notify(Notification("New Order Available", "A delivery is waiting to be picked up.", self.audience))


class OrderStatusWatcher(_Watcher):
    def __init__(self, store: DocumentStore, sink: NotificationSink, customer_id: str):
        super().__init__(store, sink)
        self.customer_id = customer_id
        self._latest: Dict[str, Dict[str, Any]] = {}
        self._last_status: Optional[str] = None

    def _subscribe(self) -> Subscription:
        return self.store.subscribe(ORDERS, equals={"userId": self.customer_id})

    async def handle(self, change: Change) -> None:
        if change.kind == "removed":
            self._latest.pop(change.doc_id, None)
        else:
            self._latest[change.doc_id] = change.doc
        if not self._latest:
            self._last_status = None
            return

        newest = max(self._latest.values(), key=lambda d: (d.get("timestamp") is not None, d.get("timestamp")))
        prev, status = self._last_status, newest.get("status")
        self._last_status = status
        if change.initial:
            return
        if prev is not None and status is not None and prev != status and status != "pending":
            label = STATUS_LABELS.get(status, status)
            await self.sink.notify(Notification("Order Update", f"Your order status changed to: {label}", self.customer_id))
