"""Order engine.

Owns order documents: their line items, the derived ``total_amount`` and
the status lifecycle. Every change that can move a table's bill or status
is reported to :class:`~.table_engine.TableStateEngine` right after the
order document has been written.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List

from ..domain import (
    MUTABLE_STATUSES,
    ItemStatus,
    Order,
    OrderLineItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    is_open,
)
from ..errors import ConcurrentUpdate, InvalidState, InvalidTransition, NotFound, ValidationError
from ..routes_metrics import orders_cancelled_total, orders_created_total, orders_settled_total
from ..store import (
    ORDERS,
    ConcurrentModification,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    Subscription,
)
from ..utils.callbacks import invoke
from ..utils.clock import utcnow
from .menu_catalog import MenuCatalog
from .table_engine import TableStateEngine, open_bill

logger = logging.getLogger("orders")

# Timestamp recorded when an order enters a status.
_STAMPS = {
    OrderStatus.PREPARING: "confirmed_at",
    OrderStatus.SERVED: "served_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def _newest_first(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda o: (o.created_at is not None, o.created_at, o.id), reverse=True)


def _require_quantity(value, *, allow_non_positive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("quantity must be an integer", entity="order_item")
    if value < 1 and not allow_non_positive:
        raise ValidationError("quantity must be at least 1", entity="order_item")
    return value


class OrderEngine:
    """Create and mutate orders and keep their tables informed."""

    def __init__(
        self,
        store: DocumentStore,
        tables: TableStateEngine,
        menu: MenuCatalog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.tables = tables
        self.menu = menu
        self.clock = clock
        # Awaited with each cancelled order once its table has been updated.
        self.cancel_listeners: List[Callable[[Order], object]] = []

    # queries ------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        doc = await self.store.get(ORDERS, order_id)
        if doc is None:
            raise NotFound("order", order_id)
        return Order.from_doc(doc)

    async def list_orders_by_table(self, table_id: str) -> List[Order]:
        docs = await self.store.query(ORDERS, table_id=table_id)
        return _newest_first(Order.from_doc(doc) for doc in docs)

    async def get_active_order(self, table_id: str) -> Order | None:
        """Return the most recently created open order for ``table_id``."""

        for order in await self.list_orders_by_table(table_id):
            if is_open(order.status):
                return order
        return None

    async def list_active_orders(self) -> List[Order]:
        docs = await self.store.query(ORDERS)
        return _newest_first(o for o in map(Order.from_doc, docs) if is_open(o.status))

    async def list_orders(self, status: OrderStatus | str | None = None) -> List[Order]:
        if status is None:
            docs = await self.store.query(ORDERS)
        else:
            docs = await self.store.query(ORDERS, status=self._parse_status(status))
        return _newest_first(Order.from_doc(doc) for doc in docs)

    async def open_bill_total(self, table_id: str) -> int:
        return open_bill(await self.list_orders_by_table(table_id))

    # creation -----------------------------------------------------------

    async def create_order(self, table_id: str, guest_count: int = 1) -> Order:
        """Start an order on ``table_id``.

        A vacant table is opened for ``guest_count`` guests first. On a table
        that is already open the order is an additional round and the
        party size stays as it was.
        """

        if not table_id:
            raise ValidationError("table id is required", entity="order")
        try:
            table = await self.tables.get_table(table_id)
        except NotFound as exc:
            raise ValidationError(
                f"unknown table {table_id!r}", entity="table", entity_id=table_id
            ) from exc
        if table.is_vacant:
            try:
                table = await self.tables.open_table(table_id, guest_count)
            except ConcurrentUpdate:
                raise
            except InvalidState:
                # Another client opened it first; this becomes an extra round.
                table = await self.tables.get_table(table_id)
                logger.info("table opened concurrently", extra={"table_id": table_id})

        now = self.clock()
        base_id = f"order-{table_id}-{int(now.timestamp() * 1000)}"
        order = Order(
            id=base_id,
            table_id=table_id,
            table_number=table.number,
            guest_count=table.guest_count,
            created_at=now,
            updated_at=now,
        )
        attempt = 0
        while True:
            try:
                await self.store.create(ORDERS, order.id, order.to_doc())
                break
            except DocumentExists:
                attempt += 1
                order.id = f"{base_id}-{attempt}"
        orders_created_total.inc()
        logger.info("order created", extra={"table_id": table_id, "order_id": order.id})
        await self.tables.on_order_status_changed(table_id)
        return order

    # line items ---------------------------------------------------------

    async def add_item(
        self, order_id: str, menu_item_id: str, quantity: int = 1, note: str | None = None
    ) -> Order:
        """Add ``quantity`` of a menu item, snapshotting its name and price.

        An in-progress line for the same menu item absorbs the quantity
        instead of a second line being appended.
        """

        quantity = _require_quantity(quantity)
        await self.get_order(order_id)
        item = await self.menu.get_item(menu_item_id)
        if not item.available:
            raise ValidationError(
                f"{item.name} is not available", entity="menu_item", entity_id=item.id
            )
        note = note.strip() if note else None

        def _add(order: Order) -> None:
            for line in order.items:
                if line.menu_item_id == item.id and line.status == ItemStatus.IN_PROGRESS:
                    line.quantity += quantity
                    if note:
                        line.note = note
                    return
            order.items.append(
                OrderLineItem(
                    menu_item_id=item.id,
                    name=item.name,
                    unit_price=item.price,
                    quantity=quantity,
                    note=note,
                )
            )

        return await self._edit_items(order_id, _add)

    async def update_item_quantity(self, order_id: str, menu_item_id: str, new_quantity: int) -> Order:
        """Set a line's quantity. Zero or less removes the line."""

        new_quantity = _require_quantity(new_quantity, allow_non_positive=True)

        def _set(order: Order) -> None:
            idx = order.find_line(menu_item_id)
            if idx is None:
                raise NotFound("order_item", menu_item_id)
            if new_quantity <= 0:
                del order.items[idx]
            else:
                order.items[idx].quantity = new_quantity

        return await self._edit_items(order_id, _set)

    async def remove_item(self, order_id: str, menu_item_id: str) -> Order:
        return await self.update_item_quantity(order_id, menu_item_id, 0)

    async def set_item_served_status(
        self, order_id: str, menu_item_id: str, status: ItemStatus | str
    ) -> Order:
        """Flag a line as served or back in progress. Totals are unaffected."""

        try:
            status = ItemStatus(status)
        except ValueError:
            raise ValidationError(
                f"unknown item status {status!r}", entity="order_item", entity_id=menu_item_id
            ) from None

        def _flag(doc: dict) -> dict | None:
            order = Order.from_doc(doc)
            if not is_open(order.status):
                raise InvalidState(
                    "order is closed", entity="order", entity_id=order_id, state=order.status.value
                )
            idx = order.find_line(menu_item_id)
            if idx is None:
                raise NotFound("order_item", menu_item_id)
            if order.items[idx].status == status:
                return None
            order.items[idx].status = status
            order.updated_at = self.clock()
            return order.to_doc()

        return Order.from_doc(await self._update(order_id, _flag))

    async def _edit_items(self, order_id: str, edit: Callable[[Order], None]) -> Order:
        def _apply(doc: dict) -> dict:
            order = Order.from_doc(doc)
            if order.status not in MUTABLE_STATUSES:
                raise InvalidState(
                    f"items cannot change while the order is {order.status.value}",
                    entity="order",
                    entity_id=order_id,
                    state=order.status.value,
                )
            if order.payment_status == PaymentStatus.PENDING:
                raise InvalidState(
                    "items cannot change while a payment is pending",
                    entity="order",
                    entity_id=order_id,
                    state="payment_pending",
                    hint="cancel the pending payment first",
                )
            edit(order)
            order.total_amount = Order.compute_total(order.items)
            order.updated_at = self.clock()
            return order.to_doc()

        order = Order.from_doc(await self._update(order_id, _apply))
        await self.tables.on_order_total_changed(order.table_id, order.id, order.total_amount)
        return order

    # status -------------------------------------------------------------

    async def advance_status(self, order_id: str, target: OrderStatus | str) -> Order:
        """Move an order one step along its lifecycle."""

        target = self._parse_status(target)
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id)

        def _advance(doc: dict) -> dict:
            order = Order.from_doc(doc)
            if not can_transition(order.status, target):
                raise InvalidTransition(order_id, order.status.value, target.value)
            now = self.clock()
            order.status = target
            setattr(order, _STAMPS[target], now)
            if target == OrderStatus.SERVED:
                for line in order.items:
                    line.status = ItemStatus.SERVED
            order.updated_at = now
            return order.to_doc()

        order = Order.from_doc(await self._update(order_id, _advance))
        logger.info(
            "order %s", target.value, extra={"order_id": order.id, "table_id": order.table_id}
        )
        if target == OrderStatus.SERVED:
            await self.tables.on_all_orders_served(order.table_id)
        else:
            if target == OrderStatus.COMPLETED:
                orders_settled_total.labels(method="manual").inc()
            await self.tables.on_order_status_changed(order.table_id)
        return order

    async def cancel_order(self, order_id: str) -> Order:
        """Cancel an order that has not been served yet.

        The order stops counting toward its table's bill; a table left
        without open orders is closed. Registered cancel listeners run
        last, which is how a pending checkout link for the order is voided.
        """

        def _cancel(doc: dict) -> dict:
            order = Order.from_doc(doc)
            if not can_transition(order.status, OrderStatus.CANCELLED):
                raise InvalidTransition(order_id, order.status.value, OrderStatus.CANCELLED.value)
            now = self.clock()
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = now
            order.updated_at = now
            return order.to_doc()

        order = Order.from_doc(await self._update(order_id, _cancel))
        orders_cancelled_total.inc()
        logger.info("order cancelled", extra={"order_id": order.id, "table_id": order.table_id})
        await self.tables.on_order_status_changed(order.table_id)
        for listener in self.cancel_listeners:
            await invoke(listener, order)
        return order

    # settlement ---------------------------------------------------------

    async def settle_orders(
        self,
        order_ids: Iterable[str],
        *,
        method: PaymentMethod | str,
        payment_id: str | None = None,
    ) -> List[Order]:
        """Complete every listed order that is still open.

        Settlement bypasses the kitchen steps: money has been received, so
        PENDING and PREPARING orders complete as well. Orders that already
        reached a terminal state are left alone. Tables whose orders changed
        are re-derived afterwards and close once nothing is left open.
        """

        method = PaymentMethod(method)
        settled: List[Order] = []
        touched: List[str] = []
        for order_id in order_ids:
            changed = False

            def _settle(doc: dict) -> dict | None:
                nonlocal changed
                order = Order.from_doc(doc)
                if not is_open(order.status):
                    return None
                now = self.clock()
                order.status = OrderStatus.COMPLETED
                order.completed_at = now
                order.updated_at = now
                order.payment_status = PaymentStatus.PAID
                if payment_id:
                    order.payment_id = payment_id
                changed = True
                return order.to_doc()

            order = Order.from_doc(await self._update(order_id, _settle))
            if changed:
                orders_settled_total.labels(method=method.value).inc()
                logger.info(
                    "order settled by %s",
                    method.value,
                    extra={"order_id": order.id, "table_id": order.table_id, "payment_id": payment_id},
                )
                settled.append(order)
                if order.table_id not in touched:
                    touched.append(order.table_id)
        for table_id in touched:
            await self.tables.on_order_status_changed(table_id)
        return settled

    async def attach_payment(
        self, order_ids: Iterable[str], payment_id: str, status: PaymentStatus
    ) -> None:
        """Record the payment currently settling each open order."""

        for order_id in order_ids:

            def _attach(doc: dict) -> dict | None:
                order = Order.from_doc(doc)
                if not is_open(order.status):
                    return None
                if order.payment_id == payment_id and order.payment_status == status:
                    return None
                if status != PaymentStatus.PENDING and order.payment_id not in (None, payment_id):
                    return None
                order.payment_id = payment_id
                order.payment_status = status
                order.updated_at = self.clock()
                return order.to_doc()

            await self._update(order_id, _attach)

    # live views ---------------------------------------------------------

    async def subscribe_table_orders(self, table_id: str, callback) -> Subscription:
        """Deliver the table's orders, newest first, on every change."""

        async def _deliver(docs):
            await invoke(callback, _newest_first(Order.from_doc(doc) for doc in docs))

        return await self.store.subscribe(ORDERS, _deliver, table_id=table_id)

    async def subscribe_orders(
        self, callback, status: OrderStatus | str | None = None
    ) -> Subscription:
        """Deliver every order, or those in ``status``, newest first."""

        async def _deliver(docs):
            await invoke(callback, _newest_first(Order.from_doc(doc) for doc in docs))

        where = {} if status is None else {"status": self._parse_status(status)}
        return await self.store.subscribe(ORDERS, _deliver, **where)

    async def subscribe_active_orders(self, callback) -> Subscription:
        """Deliver the open orders across all tables, newest first."""

        async def _deliver(docs):
            orders = (Order.from_doc(doc) for doc in docs)
            await invoke(callback, _newest_first(o for o in orders if is_open(o.status)))

        return await self.store.subscribe(ORDERS, _deliver)

    async def subscribe_order(self, order_id: str, callback) -> Subscription:
        async def _deliver(docs):
            await invoke(callback, Order.from_doc(docs[0]) if docs else None)

        return await self.store.subscribe(ORDERS, _deliver, id=order_id)

    # helpers ------------------------------------------------------------

    @staticmethod
    def _parse_status(status: OrderStatus | str) -> OrderStatus:
        try:
            return OrderStatus(status.lower() if isinstance(status, str) else status)
        except ValueError:
            raise ValidationError(f"unknown order status {status!r}", entity="order") from None

    async def _update(self, order_id: str, fn) -> dict:
        try:
            return await self.store.update(ORDERS, order_id, fn)
        except DocumentMissing as exc:
            raise NotFound("order", order_id) from exc
        except ConcurrentModification as exc:
            raise ConcurrentUpdate("order", order_id) from exc
