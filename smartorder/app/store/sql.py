"""SQLAlchemy-backed document store.

Documents live in the shared ``documents`` table. Atomic read-modify-write
is an optimistic compare-and-swap on ``version``: the update only lands if
nobody else wrote the row in between, otherwise it is retried against the
fresh copy.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, List

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..db import session_factory
from ..models import DocumentRow
from .base import (
    ConcurrentModification,
    Doc,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    Mutator,
    matches,
    normalize,
)

MAX_UPDATE_ATTEMPTS = 5

logger = logging.getLogger("store")


class SqlDocumentStore(DocumentStore):
    """Persist documents through an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine, feed=None) -> None:
        super().__init__(feed)
        self.engine = engine
        self._sessions = session_factory(engine)

    def _row_stmt(self, collection: str, doc_id: str):
        return select(DocumentRow).where(
            DocumentRow.collection == collection, DocumentRow.doc_id == doc_id
        )

    async def get(self, collection: str, doc_id: str) -> Doc | None:
        async with self._sessions() as session:
            row = (await session.execute(self._row_stmt(collection, doc_id))).scalar_one_or_none()
            return copy.deepcopy(row.data) if row is not None else None

    async def query(self, collection: str, **where: Any) -> List[Doc]:
        stmt = select(DocumentRow.data).where(DocumentRow.collection == collection)
        # String predicates are pushed down; everything is re-checked in Python
        # because JSON extraction of ints and nulls differs between dialects.
        for key, value in where.items():
            value = normalize(value)
            if isinstance(value, str):
                stmt = stmt.where(DocumentRow.data[key].as_string() == value)
        stmt = stmt.order_by(DocumentRow.seq)
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [copy.deepcopy(data) for data in rows if matches(data, where)]

    async def _insert(self, collection: str, doc_id: str, data: Doc) -> None:
        async with self._sessions() as session:
            session.add(DocumentRow(collection=collection, doc_id=doc_id, data=data, version=1))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DocumentExists(collection, doc_id) from exc

    async def _put(self, collection: str, doc_id: str, data: Doc) -> None:
        async with self._sessions() as session:
            result = await session.execute(
                update(DocumentRow)
                .where(DocumentRow.collection == collection, DocumentRow.doc_id == doc_id)
                .values(data=data, version=DocumentRow.version + 1)
            )
            if result.rowcount == 0:
                session.add(
                    DocumentRow(collection=collection, doc_id=doc_id, data=data, version=1)
                )
            await session.commit()

    async def _update(self, collection: str, doc_id: str, fn: Mutator) -> tuple[Doc, bool]:
        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            async with self._sessions() as session:
                row = (
                    await session.execute(self._row_stmt(collection, doc_id))
                ).scalar_one_or_none()
                if row is None:
                    raise DocumentMissing(collection, doc_id)
                current, version = copy.deepcopy(row.data), row.version
                new = fn(copy.deepcopy(current))
                if new is None:
                    return current, False
                result = await session.execute(
                    update(DocumentRow)
                    .where(
                        DocumentRow.collection == collection,
                        DocumentRow.doc_id == doc_id,
                        DocumentRow.version == version,
                    )
                    .values(data=new, version=version + 1)
                )
                await session.commit()
                if result.rowcount == 1:
                    return copy.deepcopy(new), True
            logger.info(
                "document %s/%s changed underneath update, retrying (attempt %d)",
                collection,
                doc_id,
                attempt,
            )
        raise ConcurrentModification(collection, doc_id)

    async def _remove(self, collection: str, doc_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                delete(DocumentRow).where(
                    DocumentRow.collection == collection, DocumentRow.doc_id == doc_id
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def close(self) -> None:
        await super().close()
        await self.engine.dispose()
