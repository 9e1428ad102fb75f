"""Document store contract shared by every backend.

The ordering core only needs point reads and writes by id, equality
queries, an atomic single-document read-modify-write, and a live query
subscription. Backends implement the storage primitives; subscription
fan-out lives here so every backend notifies the same way.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from ..utils.callbacks import invoke

if TYPE_CHECKING:  # pragma: no cover
    from ..events import ChangeFeed

logger = logging.getLogger("store")

Doc = Dict[str, Any]
Mutator = Callable[[Doc], Optional[Doc]]
Callback = Callable[[List[Doc]], Optional[Awaitable[None]]]

TABLES = "tables"
ORDERS = "orders"
MENU = "menu"
CATEGORIES = "categories"
PAYMENTS = "payments"


class DocumentMissing(KeyError):
    """Raised when a document that must exist does not."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id}")
        self.collection = collection
        self.doc_id = doc_id


class DocumentExists(ValueError):
    """Raised by :meth:`DocumentStore.create` when the id is taken."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class ConcurrentModification(RuntimeError):
    """An atomic update lost too many races against other writers."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id}: too many concurrent writers")
        self.collection = collection
        self.doc_id = doc_id


def normalize(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def matches(doc: Doc, where: Dict[str, Any]) -> bool:
    """Return ``True`` if ``doc`` satisfies every equality predicate."""

    return all(doc.get(key) == normalize(value) for key, value in where.items())


class Subscription:
    """Handle returned by :meth:`DocumentStore.subscribe`.

    Calling :meth:`unsubscribe` (or the handle itself) stops delivery.
    """

    def __init__(
        self, store: "DocumentStore", collection: str, where: Dict[str, Any], callback: Callback
    ) -> None:
        self.store = store
        self.collection = collection
        self.where = where
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._detach(self)

    __call__ = unsubscribe


class DocumentStore(ABC):
    """Contract for the external document database."""

    def __init__(self, feed: "ChangeFeed | None" = None) -> None:
        self.feed = feed
        self._subs: Dict[str, List[Subscription]] = defaultdict(list)

    # storage primitives -------------------------------------------------

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Doc | None:
        """Return a copy of the document or ``None``."""
        raise NotImplementedError

    @abstractmethod
    async def query(self, collection: str, **where: Any) -> List[Doc]:
        """Return copies of all documents matching the equality predicates."""
        raise NotImplementedError

    @abstractmethod
    async def _insert(self, collection: str, doc_id: str, data: Doc) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _put(self, collection: str, doc_id: str, data: Doc) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _update(self, collection: str, doc_id: str, fn: Mutator) -> tuple[Doc, bool]:
        raise NotImplementedError

    @abstractmethod
    async def _remove(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    # public writes ------------------------------------------------------

    async def create(self, collection: str, doc_id: str, data: Doc) -> Doc:
        """Insert a new document; raise :class:`DocumentExists` if present."""

        await self._insert(collection, doc_id, data)
        await self._changed(collection)
        return data

    async def set(self, collection: str, doc_id: str, data: Doc) -> Doc:
        """Create or overwrite a document."""

        await self._put(collection, doc_id, data)
        await self._changed(collection)
        return data

    async def update(self, collection: str, doc_id: str, fn: Mutator) -> Doc:
        """Atomically apply ``fn`` to the current document and persist the result.

        ``fn`` receives a private copy and returns the new document, or
        ``None`` to leave the stored document untouched. Exceptions raised by
        ``fn`` abort the update and propagate. Raises
        :class:`DocumentMissing` when the document does not exist.
        """

        doc, changed = await self._update(collection, doc_id, fn)
        if changed:
            await self._changed(collection)
        return doc

    async def delete(self, collection: str, doc_id: str) -> bool:
        removed = await self._remove(collection, doc_id)
        if removed:
            await self._changed(collection)
        return removed

    # subscriptions ------------------------------------------------------

    async def subscribe(self, collection: str, callback: Callback, **where: Any) -> Subscription:
        """Deliver the full matching result set now and after every change."""

        sub = Subscription(self, collection, where, callback)
        self._subs[collection].append(sub)
        await self._deliver(sub)
        return sub

    async def notify(self, collection: str) -> None:
        """Re-run every live query on ``collection`` and deliver the results."""

        for sub in list(self._subs.get(collection, [])):
            if sub.active:
                await self._deliver(sub)

    def _detach(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.collection, [])
        if sub in subs:
            subs.remove(sub)

    async def _deliver(self, sub: Subscription) -> None:
        docs = await self.query(sub.collection, **sub.where)
        try:
            await invoke(sub.callback, docs)
        except Exception:
            # A broken observer must not fail the write that triggered it.
            logger.exception("subscriber callback failed", extra={"route": sub.collection})

    async def _changed(self, collection: str) -> None:
        if self.feed is not None:
            await self.feed.publish(collection)
        await self.notify(collection)

    async def close(self) -> None:
        for subs in self._subs.values():
            for sub in list(subs):
                sub.active = False
        self._subs.clear()
