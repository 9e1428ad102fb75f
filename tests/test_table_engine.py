"""Table state engine: derivation, opening/closing and consistency repair."""

import logging
from datetime import datetime, timezone

import pytest

from config import DEFAULT_AREAS, TableArea
from smartorder.app.domain import Order, OrderStatus, TableStatus
from smartorder.app.errors import InvalidState, NotFound, ValidationError
from smartorder.app.services.table_engine import derive_status, open_bill
from smartorder.app.store import ORDERS, TABLES


def _order(status: OrderStatus, total: int = 0) -> Order:
    return Order(id=f"o-{status.value}-{total}", table_id="t", status=status, total_amount=total)


def test_derive_status_rules():
    assert derive_status([]) == TableStatus.VACANT
    assert derive_status([_order(OrderStatus.CANCELLED), _order(OrderStatus.COMPLETED)]) == TableStatus.VACANT
    assert derive_status([_order(OrderStatus.PENDING)]) == TableStatus.OCCUPIED
    assert derive_status([_order(OrderStatus.PREPARING)]) == TableStatus.AWAITING_FOOD
    assert (
        derive_status([_order(OrderStatus.SERVED), _order(OrderStatus.PENDING)])
        == TableStatus.AWAITING_FOOD
    )
    assert (
        derive_status([_order(OrderStatus.SERVED), _order(OrderStatus.COMPLETED)])
        == TableStatus.SERVED
    )


def test_open_bill_skips_closed_orders():
    orders = [
        _order(OrderStatus.PENDING, 50000),
        _order(OrderStatus.SERVED, 30000),
        _order(OrderStatus.COMPLETED, 99000),
        _order(OrderStatus.CANCELLED, 12000),
    ]
    assert open_bill(orders) == 80000


@pytest.mark.anyio
async def test_initialize_tables_layout(services):
    tables = await services.tables.list_tables()
    assert len(tables) == 30
    assert [t.number for t in tables] == list(range(1, 31))
    first = await services.tables.get_table("tang1-1")
    assert (first.area_id, first.area_name, first.number, first.capacity) == ("tang1", "Tầng 1", 1, 6)
    assert (await services.tables.get_table("tang1-5")).capacity == 4
    assert (await services.tables.get_table("tang2-1")).number == 13
    assert (await services.tables.get_table("vip-4")).number == 30
    assert len(await services.tables.list_tables_by_area("sanvuon")) == 6

    # running it again creates nothing and keeps live state
    await services.orders.create_order("tang1-1", 2)
    assert await services.tables.initialize_tables(DEFAULT_AREAS) == 0
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.OCCUPIED


@pytest.mark.anyio
async def test_initialize_custom_areas(store, clock):
    from smartorder.app.services import TableStateEngine

    engine = TableStateEngine(store, clock)
    created = await engine.initialize_tables([TableArea(id="bar", name="Bar", total_tables=3)])
    assert created == 3
    assert [t.id for t in await engine.list_tables()] == ["bar-1", "bar-2", "bar-3"]


@pytest.mark.anyio
async def test_open_table_rules(services):
    table = await services.tables.open_table("tang1-1", 3)
    assert table.status == TableStatus.OCCUPIED
    assert table.bill_total == 0
    with pytest.raises(InvalidState) as exc_info:
        await services.tables.open_table("tang1-1", 2)
    assert exc_info.value.state == "occupied"
    with pytest.raises(ValidationError):
        await services.tables.open_table("tang1-3", 0)
    with pytest.raises(NotFound):
        await services.tables.open_table("roof-1", 2)


@pytest.mark.anyio
async def test_status_follows_kitchen_progress(services):
    first = await services.orders.create_order("tang1-1", 4)
    second = await services.orders.create_order("tang1-1", 4)
    await services.orders.add_item(first.id, "pho-bo", 1)
    await services.orders.add_item(second.id, "tra-da", 1)

    await services.orders.advance_status(first.id, OrderStatus.PREPARING)
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.AWAITING_FOOD
    await services.orders.advance_status(first.id, OrderStatus.SERVED)
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.AWAITING_FOOD
    await services.orders.cancel_order(second.id)
    table = await services.tables.get_table("tang1-1")
    assert table.status == TableStatus.SERVED
    assert table.bill_total == 70000


@pytest.mark.anyio
async def test_close_table_requires_no_open_orders(services):
    await services.orders.create_order("tang1-1", 2)
    with pytest.raises(InvalidState):
        await services.tables.close_table("tang1-1")


@pytest.mark.anyio
async def test_duration_and_stats(services, clock):
    await services.orders.create_order("tang1-1", 2)
    order = await services.orders.create_order("vip-1", 2)
    await services.orders.add_item(order.id, "pho-bo", 1)
    clock.advance(minutes=42, seconds=30)

    assert await services.tables.duration_minutes("tang1-1") == 42
    assert await services.tables.duration_minutes("tang2-1") == 0
    stats = await services.tables.stats()
    assert stats["total"] == 30
    assert stats["vacant"] == 28
    assert stats["occupied"] == 2
    assert stats["open_bill_total"] == 70000


@pytest.mark.anyio
async def test_lagging_read_does_not_undo_new_total(services, store):
    order = await services.orders.create_order("tang1-1", 2)
    await services.orders.add_item(order.id, "pho-bo", 1)
    # the reported total wins over what the order query returns
    table = await services.tables.on_order_total_changed("tang1-1", order.id, 210000)
    assert table.bill_total == 210000


@pytest.mark.anyio
async def test_reconcile_repairs_and_warns(services, store, caplog):
    order = await services.orders.create_order("tang1-1", 2)
    await services.orders.add_item(order.id, "pho-bo", 2)

    def _corrupt(doc):
        doc["bill_total"] = 5
        doc["status"] = "served"
        return doc

    await store.update(TABLES, "tang1-1", _corrupt)
    with caplog.at_level(logging.WARNING, logger="tables"):
        assert await services.tables.reconcile_table("tang1-1") is True
    messages = [r.getMessage() for r in caplog.records if r.name == "tables"]
    assert any("bill_total diverged" in m for m in messages)
    assert any("status diverged" in m for m in messages)

    table = await services.tables.get_table("tang1-1")
    assert table.bill_total == 140000
    assert table.status == TableStatus.OCCUPIED
    assert await services.tables.reconcile_table("tang1-1") is False


@pytest.mark.anyio
async def test_reconcile_all_closes_orphaned_tables(services, store, clock):
    order = await services.orders.create_order("tang2-2", 2)

    def _complete(doc):
        doc["status"] = "completed"
        doc["completed_at"] = clock().isoformat()
        return doc

    # an order finished by another client without the table being told
    await store.update(ORDERS, order.id, _complete)
    repaired = await services.tables.reconcile_all()
    assert repaired == ["tang2-2"]
    table = await services.tables.get_table("tang2-2")
    assert table.status == TableStatus.VACANT
    assert table.opened_at is None


@pytest.mark.anyio
async def test_reconcile_adopts_orders_on_vacant_table(services, store, clock):
    orphan = Order(
        id="order-tang1-3-1",
        table_id="tang1-3",
        guest_count=3,
        total_amount=20000,
        created_at=datetime(2024, 5, 6, 11, 0, tzinfo=timezone.utc),
    )
    await store.set(ORDERS, orphan.id, orphan.to_doc())
    assert await services.tables.reconcile_table("tang1-3") is True
    table = await services.tables.get_table("tang1-3")
    assert table.status == TableStatus.OCCUPIED
    assert table.guest_count == 3
    assert table.bill_total == 20000
    assert table.opened_at == orphan.created_at


@pytest.mark.anyio
async def test_table_subscription_by_area(services):
    snapshots = []

    async def on_change(tables):
        snapshots.append([(t.id, t.status) for t in tables if t.id == "vip-2"])

    sub = await services.tables.subscribe_tables(on_change, area_id="vip")
    await services.orders.create_order("vip-2", 2)
    await services.orders.create_order("tang1-1", 2)
    sub.unsubscribe()
    assert snapshots[0] == [("vip-2", TableStatus.VACANT)]
    assert snapshots[-1] == [("vip-2", TableStatus.OCCUPIED)]
    assert all(len(s) == 1 for s in snapshots)

    single = []
    handle = await services.tables.subscribe_table("vip-2", lambda t: single.append(t.guest_count))
    handle()
    assert single == [2]
