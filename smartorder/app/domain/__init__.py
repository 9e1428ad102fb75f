"""Domain models and helpers."""

from .models import Category, MenuItem, Order, OrderLineItem, Payment, Table
from .order_status import (
    MUTABLE_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    ItemStatus,
    OrderStatus,
    can_transition,
    is_open,
)
from .payment_status import PaymentMethod, PaymentStatus, map_gateway_status
from .table_status import TableStatus

__all__ = [
    "Category",
    "MenuItem",
    "Order",
    "OrderLineItem",
    "Payment",
    "Table",
    "OrderStatus",
    "ItemStatus",
    "TRANSITIONS",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "MUTABLE_STATUSES",
    "can_transition",
    "is_open",
    "PaymentStatus",
    "PaymentMethod",
    "map_gateway_status",
    "TableStatus",
]
