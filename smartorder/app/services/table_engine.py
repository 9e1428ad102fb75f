"""Table state engine.

Tables are never opened, closed or re-statused directly by staff; every
change here is the consequence of an order lifecycle event. The engine
derives a table's status and bill from the orders that reference it and is
the only writer of ``Table.status``, ``bill_total``, ``guest_count`` and
``opened_at``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List

from ..domain import OrderStatus, Table, TableStatus, is_open
from ..domain.models import Order
from ..errors import ConcurrentUpdate, ConsistencyWarning, InvalidState, NotFound, ValidationError
from ..routes_metrics import consistency_warnings_total
from ..store import (
    ORDERS,
    TABLES,
    ConcurrentModification,
    DocumentMissing,
    DocumentStore,
    Subscription,
)
from ..utils.callbacks import invoke
from ..utils.clock import utcnow
from .seed import CAPACITY_CYCLE

logger = logging.getLogger("tables")


def open_bill(orders: Iterable[Order]) -> int:
    """Sum ``total_amount`` over the orders that are still open."""

    return sum(order.total_amount for order in orders if is_open(order.status))


def derive_status(orders: Iterable[Order]) -> TableStatus:
    """Return the table status implied by ``orders``.

    Only open orders matter. A table without open orders is vacant.
    """

    statuses = [order.status for order in orders if is_open(order.status)]
    if not statuses:
        return TableStatus.VACANT
    served = statuses.count(OrderStatus.SERVED)
    if served == len(statuses):
        return TableStatus.SERVED
    if served or OrderStatus.PREPARING in statuses:
        return TableStatus.AWAITING_FOOD
    return TableStatus.OCCUPIED


class TableStateEngine:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    # queries ------------------------------------------------------------

    async def get_table(self, table_id: str) -> Table:
        doc = await self.store.get(TABLES, table_id)
        if doc is None:
            raise NotFound("table", table_id)
        return Table.from_doc(doc)

    async def list_tables(self) -> List[Table]:
        tables = [Table.from_doc(doc) for doc in await self.store.query(TABLES)]
        return sorted(tables, key=lambda t: t.number)

    async def list_tables_by_area(self, area_id: str) -> List[Table]:
        tables = [Table.from_doc(doc) for doc in await self.store.query(TABLES, area_id=area_id)]
        return sorted(tables, key=lambda t: t.number)

    async def stats(self) -> dict:
        """Return table counts per status and the total outstanding bill."""

        tables = await self.list_tables()
        data = {"total": len(tables), "open_bill_total": sum(t.bill_total for t in tables)}
        for status in TableStatus:
            data[status.value] = sum(1 for t in tables if t.status == status)
        return data

    async def duration_minutes(self, table_id: str) -> int:
        table = await self.get_table(table_id)
        return table.duration_minutes(self.clock())

    async def _orders(self, table_id: str) -> List[Order]:
        return [Order.from_doc(doc) for doc in await self.store.query(ORDERS, table_id=table_id)]

    # setup --------------------------------------------------------------

    async def initialize_tables(self, areas) -> int:
        """Create the fixed table inventory for ``areas``.

        Table ids are ``<area>-<seq>`` and numbers run across all areas.
        Existing tables are left untouched. Returns how many were created.
        """

        created = 0
        number = 1
        now = self.clock()
        for area in areas:
            for seq in range(1, area.total_tables + 1):
                table_id = f"{area.id}-{seq}"
                if await self.store.get(TABLES, table_id) is None:
                    table = Table(
                        id=table_id,
                        area_id=area.id,
                        area_name=area.name,
                        number=number,
                        capacity=CAPACITY_CYCLE[seq % len(CAPACITY_CYCLE)],
                        created_at=now,
                        updated_at=now,
                    )
                    await self.store.set(TABLES, table_id, table.to_doc())
                    created += 1
                number += 1
        logger.info("initialized %d tables", created)
        return created

    # lifecycle ----------------------------------------------------------

    async def open_table(self, table_id: str, guest_count: int) -> Table:
        """Seat ``guest_count`` guests at a vacant table."""

        table = await self.get_table(table_id)
        if not isinstance(guest_count, int) or guest_count < 1:
            raise ValidationError(
                "guest count must be at least 1", entity="table", entity_id=table_id
            )
        if guest_count > table.capacity:
            raise ValidationError(
                f"table seats at most {table.capacity} guests",
                entity="table",
                entity_id=table_id,
                state=table.status.value,
            )
        now = self.clock()

        def _open(doc: dict) -> dict:
            current = Table.from_doc(doc)
            if not current.is_vacant:
                raise InvalidState(
                    "table is already occupied",
                    entity="table",
                    entity_id=table_id,
                    state=current.status.value,
                )
            current.status = TableStatus.OCCUPIED
            current.guest_count = guest_count
            current.opened_at = now
            current.bill_total = 0
            current.updated_at = now
            return current.to_doc()

        doc = await self._update(table_id, _open)
        logger.info("table opened for %d guests", guest_count, extra={"table_id": table_id})
        return Table.from_doc(doc)

    async def on_order_total_changed(self, table_id: str, order_id: str, new_order_total: int) -> Table:
        """Recompute the table bill after an order's total changed.

        ``new_order_total`` wins over whatever the store returns for
        ``order_id`` so a lagging read cannot undo the change being reported.
        """

        orders = await self._orders(table_id)
        total = 0
        for order in orders:
            if not is_open(order.status):
                continue
            total += new_order_total if order.id == order_id else order.total_amount

        def _set_bill(doc: dict) -> dict | None:
            current = Table.from_doc(doc)
            if current.is_vacant or current.bill_total == total:
                return None
            current.bill_total = total
            current.updated_at = self.clock()
            return current.to_doc()

        return Table.from_doc(await self._update(table_id, _set_bill))

    async def on_all_orders_served(self, table_id: str) -> Table:
        """Re-derive the status once an order reached SERVED."""

        return await self.on_order_status_changed(table_id)

    async def on_order_status_changed(self, table_id: str) -> Table:
        """Re-derive status and bill from the table's orders.

        When no open order remains the table is closed.
        """

        orders = await self._orders(table_id)
        status = derive_status(orders)
        if status == TableStatus.VACANT:
            table = await self.get_table(table_id)
            if table.is_vacant:
                return table
            return await self.close_table(table_id)
        return await self._apply(table_id, orders, status)

    async def close_table(self, table_id: str) -> Table:
        """Reset a table to vacant once all its orders are terminal."""

        still_open = [o.id for o in await self._orders(table_id) if is_open(o.status)]
        if still_open:
            raise InvalidState(
                f"table has {len(still_open)} open order(s)",
                entity="table",
                entity_id=table_id,
                state="open_orders",
            )

        def _close(doc: dict) -> dict | None:
            current = Table.from_doc(doc)
            if current.is_vacant and current.bill_total == 0 and current.opened_at is None:
                return None
            current.status = TableStatus.VACANT
            current.guest_count = 0
            current.opened_at = None
            current.bill_total = 0
            current.updated_at = self.clock()
            return current.to_doc()

        doc = await self._update(table_id, _close)
        logger.info("table closed", extra={"table_id": table_id})
        return Table.from_doc(doc)

    # consistency --------------------------------------------------------

    async def reconcile_table(self, table_id: str) -> bool:
        """Repair a table whose stored state disagrees with its orders.

        Returns ``True`` if anything had diverged.
        """

        table = await self.get_table(table_id)
        orders = await self._orders(table_id)
        status = derive_status(orders)
        bill = open_bill(orders)
        diverged = False
        if table.bill_total != bill:
            self._warn(ConsistencyWarning(table_id, table.bill_total, bill))
            diverged = True
        if table.status != status:
            self._warn(ConsistencyWarning(table_id, table.status.value, status.value, "status"))
            diverged = True
        if not diverged:
            return False
        if status == TableStatus.VACANT:
            await self.close_table(table_id)
        else:
            await self._apply(table_id, orders, status)
        return True

    async def reconcile_all(self) -> List[str]:
        repaired = []
        for table in await self.list_tables():
            if await self.reconcile_table(table.id):
                repaired.append(table.id)
        return repaired

    def _warn(self, warning: ConsistencyWarning) -> None:
        consistency_warnings_total.labels(field=warning.field).inc()
        logger.warning(str(warning), extra={"table_id": warning.table_id})

    async def _apply(self, table_id: str, orders: List[Order], status: TableStatus) -> Table:
        bill = open_bill(orders)
        open_orders = [o for o in orders if is_open(o.status)]

        def _derive(doc: dict) -> dict | None:
            current = Table.from_doc(doc)
            if current.status == status and current.bill_total == bill and not current.is_vacant:
                return None
            if current.is_vacant:
                # Orders exist for a table nobody opened; adopt their party.
                self._warn(ConsistencyWarning(table_id, current.status.value, status.value, "status"))
                stamps = [o.created_at for o in open_orders if o.created_at]
                current.opened_at = min(stamps) if stamps else self.clock()
                current.guest_count = max([o.guest_count for o in open_orders] + [1])
            current.status = status
            current.bill_total = bill
            current.updated_at = self.clock()
            return current.to_doc()

        return Table.from_doc(await self._update(table_id, _derive))

    async def _update(self, table_id: str, fn) -> dict:
        try:
            return await self.store.update(TABLES, table_id, fn)
        except DocumentMissing as exc:
            raise NotFound("table", table_id) from exc
        except ConcurrentModification as exc:
            raise ConcurrentUpdate("table", table_id) from exc

    # live views ---------------------------------------------------------

    async def subscribe_tables(self, callback, area_id: str | None = None) -> Subscription:
        """Deliver ``List[Table]`` ordered by number on every change."""

        async def _deliver(docs):
            tables = sorted((Table.from_doc(doc) for doc in docs), key=lambda t: t.number)
            await invoke(callback, tables)

        where = {"area_id": area_id} if area_id else {}
        return await self.store.subscribe(TABLES, _deliver, **where)

    async def subscribe_table(self, table_id: str, callback) -> Subscription:
        async def _deliver(docs):
            await invoke(callback, Table.from_doc(docs[0]) if docs else None)

        return await self.store.subscribe(TABLES, _deliver, id=table_id)
