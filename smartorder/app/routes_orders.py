"""Order routes used by the waiter and kitchen screens."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from .deps import get_orders
from .domain import ItemStatus, OrderStatus
from .services import OrderEngine
from .utils.responses import ok

router = APIRouter(prefix="/api/orders")


class CreateOrderPayload(BaseModel):
    table_id: str
    guest_count: int = Field(default=1)


class AddItemPayload(BaseModel):
    menu_item_id: str
    quantity: int = 1
    note: str | None = None


class QuantityPayload(BaseModel):
    quantity: int


class ItemStatusPayload(BaseModel):
    status: ItemStatus


class AdvancePayload(BaseModel):
    status: OrderStatus


@router.post("")
async def create_order(payload: CreateOrderPayload, orders: OrderEngine = Depends(get_orders)) -> dict:
    order = await orders.create_order(payload.table_id, payload.guest_count)
    return ok(order.to_doc())


@router.get("")
async def list_orders(
    status: str | None = None,
    active: bool = False,
    orders: OrderEngine = Depends(get_orders),
) -> dict:
    rows = await (orders.list_active_orders() if active else orders.list_orders(status))
    return ok([o.to_doc() for o in rows])


@router.get("/{order_id}")
async def get_order(order_id: str, orders: OrderEngine = Depends(get_orders)) -> dict:
    return ok((await orders.get_order(order_id)).to_doc())


@router.post("/{order_id}/items")
async def add_item(
    order_id: str, payload: AddItemPayload, orders: OrderEngine = Depends(get_orders)
) -> dict:
    order = await orders.add_item(order_id, payload.menu_item_id, payload.quantity, payload.note)
    return ok(order.to_doc())


@router.put("/{order_id}/items/{menu_item_id}")
async def update_item_quantity(
    order_id: str,
    menu_item_id: str,
    payload: QuantityPayload,
    orders: OrderEngine = Depends(get_orders),
) -> dict:
    """Set a line's quantity; zero or less removes the line."""

    order = await orders.update_item_quantity(order_id, menu_item_id, payload.quantity)
    return ok(order.to_doc())


@router.delete("/{order_id}/items/{menu_item_id}")
async def remove_item(
    order_id: str, menu_item_id: str, orders: OrderEngine = Depends(get_orders)
) -> dict:
    order = await orders.remove_item(order_id, menu_item_id)
    return ok(order.to_doc())


@router.post("/{order_id}/items/{menu_item_id}/status")
async def set_item_status(
    order_id: str,
    menu_item_id: str,
    payload: ItemStatusPayload,
    orders: OrderEngine = Depends(get_orders),
) -> dict:
    order = await orders.set_item_served_status(order_id, menu_item_id, payload.status)
    return ok(order.to_doc())


@router.post("/{order_id}/advance")
async def advance_status(
    order_id: str, payload: AdvancePayload, orders: OrderEngine = Depends(get_orders)
) -> dict:
    order = await orders.advance_status(order_id, payload.status)
    return ok(order.to_doc())


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: str, orders: OrderEngine = Depends(get_orders)) -> dict:
    order = await orders.cancel_order(order_id)
    return ok(order.to_doc())
