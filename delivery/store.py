from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Set, Tuple

from .errors import NotFound

logger = logging.getLogger(__name__)


Doc = Dict[str, Any]
ChangeKind = Literal["added", "modified", "removed"]

ORDERS = "orders"
STORES = "stores"
USERS = "users"


@dataclass
class Change:
    kind: ChangeKind
    doc_id: str
    doc: Doc
    initial: bool = False  # part of the replay sent on subscribe


def _matches(doc: Doc, equals: Optional[Dict[str, Any]], within: Optional[Dict[str, Iterable[Any]]]) -> bool:
    for k, v in (equals or {}).items():
        if doc.get(k) != v:
            return False
    for k, vs in (within or {}).items():
        if doc.get(k) not in set(vs):
            return False
    return True


class Subscription:
    """
    Real-time change feed for one collection. The first batch replays every
    matching document as "added", the same way a fresh snapshot listener does.
    """

    def __init__(self, owner: "MemoryDocumentStore", collection: str, equals: Optional[Dict[str, Any]]):
        self._owner = owner
        self.collection = collection
        self.equals = equals or {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _push(self, change: Change) -> None:
        if not self.closed:
            self._queue.put_nowait(change)

    def pending(self) -> List[Change]:
        out: List[Change] = []
        while not self._queue.empty():
            change = self._queue.get_nowait()
            if change is not None:
                out.append(change)
        return out

    async def next(self) -> Optional[Change]:
        if self.closed:
            return None
        change = await self._queue.get()
        return change

    def __aiter__(self):
        return self

    async def __anext__(self) -> Change:
        change = await self.next()
        if change is None:
            raise StopAsyncIteration
        return change

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._owner._unsubscribe(self)
        # wake a reader blocked in next()
        self._queue.put_nowait(None)


class DocumentStore:
    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        raise NotImplementedError

    async def add(self, collection: str, doc: Doc) -> str:
        raise NotImplementedError

    async def put(self, collection: str, doc_id: str, doc: Doc) -> None:
        raise NotImplementedError

    async def update_where(self, collection: str, doc_id: str, expected: Dict[str, Any], changes: Doc) -> Optional[Doc]:
        """
        Apply `changes` only if every field in `expected` still holds at write
        time. Returns the updated document, None if the precondition failed,
        and raises NotFound if the document does not exist.
        """
        raise NotImplementedError

    async def delete_where(self, collection: str, doc_id: str, expected: Dict[str, Any]) -> Optional[Doc]:
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        equals: Optional[Dict[str, Any]] = None,
        within: Optional[Dict[str, Iterable[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Tuple[str, Doc]]:
        raise NotImplementedError

    def subscribe(self, collection: str, equals: Optional[Dict[str, Any]] = None) -> Subscription:
        raise NotImplementedError


class MemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._data: Dict[str, Dict[str, Doc]] = {}
        self._subs: Set[Subscription] = set()

    def _collection(self, name: str) -> Dict[str, Doc]:
        return self._data.setdefault(name, {})

    def _emit(self, collection: str, kind: ChangeKind, doc_id: str, doc: Doc) -> None:
        for sub in list(self._subs):
            if sub.collection == collection and _matches(doc, sub.equals, None):
                sub._push(Change(kind, doc_id, copy.deepcopy(doc)))

    def _unsubscribe(self, sub: Subscription) -> None:
        self._subs.discard(sub)

    async def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        async with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def add(self, collection: str, doc: Doc) -> str:
        doc_id = uuid.uuid4().hex
        await self.put(collection, doc_id, doc)
        return doc_id

    async def put(self, collection: str, doc_id: str, doc: Doc) -> None:
        async with self._lock:
            col = self._collection(collection)
            kind: ChangeKind = "modified" if doc_id in col else "added"
            col[doc_id] = copy.deepcopy(doc)
            self._emit(collection, kind, doc_id, col[doc_id])

    async def update_where(self, collection: str, doc_id: str, expected: Dict[str, Any], changes: Doc) -> Optional[Doc]:
        async with self._lock:
            col = self._collection(collection)
            doc = col.get(doc_id)
            if doc is None:
                raise NotFound(f"{collection}/{doc_id} does not exist")
            if not _matches(doc, expected, None):
                logger.debug(f"Conditional update rejected for {collection}/{doc_id}: expected {expected}")
                return None
            doc.update(copy.deepcopy(changes))
            self._emit(collection, "modified", doc_id, doc)
            return copy.deepcopy(doc)

    async def delete_where(self, collection: str, doc_id: str, expected: Dict[str, Any]) -> Optional[Doc]:
        async with self._lock:
            col = self._collection(collection)
            doc = col.get(doc_id)
            if doc is None:
                raise NotFound(f"{collection}/{doc_id} does not exist")
            if not _matches(doc, expected, None):
                return None
            del col[doc_id]
            self._emit(collection, "removed", doc_id, doc)
            return copy.deepcopy(doc)

    async def query(
        self,
        collection: str,
        equals: Optional[Dict[str, Any]] = None,
        within: Optional[Dict[str, Iterable[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Tuple[str, Doc]]:
        async with self._lock:
            rows = [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in self._collection(collection).items()
                if _matches(doc, equals, within)
            ]
        if order_by is not None:
            # documents missing the field sort as if oldest
            present = [r for r in rows if r[1].get(order_by) is not None]
            missing = [r for r in rows if r[1].get(order_by) is None]
            present.sort(key=lambda r: r[1][order_by], reverse=descending)
            rows = present + missing if descending else missing + present
        if limit is not None:
            rows = rows[: max(0, limit)]
        return rows

    def subscribe(self, collection: str, equals: Optional[Dict[str, Any]] = None) -> Subscription:
        sub = Subscription(self, collection, equals)
        for doc_id, doc in self._collection(collection).items():
            if _matches(doc, sub.equals, None):
                sub._push(Change("added", doc_id, copy.deepcopy(doc), initial=True))
        self._subs.add(sub)
        return sub
