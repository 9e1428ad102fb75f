"""In-process document store used for demos and tests."""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List

from .base import Doc, DocumentExists, DocumentMissing, DocumentStore, Mutator, matches


class InMemoryDocumentStore(DocumentStore):
    """Keep documents in dictionaries guarded by one lock per document."""

    def __init__(self, feed=None) -> None:
        super().__init__(feed)
        self._data: Dict[str, Dict[str, Doc]] = defaultdict(dict)
        self._locks: Dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, collection: str, doc_id: str) -> Doc | None:
        doc = self._data[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, **where: Any) -> List[Doc]:
        return [
            copy.deepcopy(doc)
            for doc in self._data[collection].values()
            if matches(doc, where)
        ]

    async def _insert(self, collection: str, doc_id: str, data: Doc) -> None:
        async with self._locks[(collection, doc_id)]:
            if doc_id in self._data[collection]:
                raise DocumentExists(collection, doc_id)
            self._data[collection][doc_id] = copy.deepcopy(data)

    async def _put(self, collection: str, doc_id: str, data: Doc) -> None:
        async with self._locks[(collection, doc_id)]:
            self._data[collection][doc_id] = copy.deepcopy(data)

    async def _update(self, collection: str, doc_id: str, fn: Mutator) -> tuple[Doc, bool]:
        async with self._locks[(collection, doc_id)]:
            current = self._data[collection].get(doc_id)
            if current is None:
                raise DocumentMissing(collection, doc_id)
            new = fn(copy.deepcopy(current))
            if new is None:
                return copy.deepcopy(current), False
            self._data[collection][doc_id] = copy.deepcopy(new)
            return copy.deepcopy(new), True

    async def _remove(self, collection: str, doc_id: str) -> bool:
        async with self._locks[(collection, doc_id)]:
            return self._data[collection].pop(doc_id, None) is not None
