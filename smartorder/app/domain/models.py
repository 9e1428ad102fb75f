"""Typed views over the documents kept in the store.

Documents are persisted as plain JSON dictionaries; these pydantic models
are the only place their shape is defined. Money is always an ``int`` in
minor currency units.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .order_status import ItemStatus, OrderStatus
from .payment_status import PaymentMethod, PaymentStatus
from .table_status import TableStatus


class Document(BaseModel):
    """Base class adding store (de)serialisation helpers."""

    model_config = ConfigDict(extra="ignore")

    id: str

    def to_doc(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: dict[str, Any]):
        return cls.model_validate(doc)


class Table(Document):
    area_id: str
    area_name: str | None = None
    number: int
    capacity: int = Field(ge=1)
    status: TableStatus = TableStatus.VACANT
    guest_count: int = Field(default=0, ge=0)
    opened_at: datetime | None = None
    bill_total: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_vacant(self) -> bool:
        return self.status == TableStatus.VACANT

    def duration_minutes(self, now: datetime) -> int:
        """Return whole minutes since the table was opened."""

        if self.opened_at is None:
            return 0
        return max(int((now - self.opened_at).total_seconds() // 60), 0)


class Category(Document):
    name: str
    icon: str | None = None
    sort: int = 0


class MenuItem(Document):
    name: str
    description: str | None = None
    price: int = Field(ge=0)
    category: str
    image_url: str | None = None
    available: bool = True


class OrderLineItem(BaseModel):
    """One menu item on an order with its price snapshotted at add-time."""

    model_config = ConfigDict(extra="ignore")

    menu_item_id: str
    name: str
    unit_price: int = Field(ge=0)
    quantity: int = Field(ge=1)
    note: str | None = None
    status: ItemStatus = ItemStatus.IN_PROGRESS

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


class Order(Document):
    table_id: str
    table_number: int | None = None
    guest_count: int = 0
    items: list[OrderLineItem] = []
    status: OrderStatus = OrderStatus.PENDING
    total_amount: int = 0
    payment_id: str | None = None
    payment_status: PaymentStatus | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    confirmed_at: datetime | None = None
    served_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @staticmethod
    def compute_total(items: list[OrderLineItem]) -> int:
        return sum(line.subtotal for line in items)

    def find_line(self, menu_item_id: str) -> int | None:
        """Return the index of the line for ``menu_item_id``.

        In-progress lines win over served ones so the kitchen copy is the one
        being edited.
        """

        fallback = None
        for idx, line in enumerate(self.items):
            if line.menu_item_id != menu_item_id:
                continue
            if line.status == ItemStatus.IN_PROGRESS:
                return idx
            if fallback is None:
                fallback = idx
        return fallback


class Payment(Document):
    """A settlement attempt for an order or for a whole table."""

    order_code: int
    ref_type: Literal["order", "table"]
    ref_id: str
    table_id: str
    order_ids: list[str] = []
    amount: int = Field(ge=0)
    method: PaymentMethod = PaymentMethod.GATEWAY
    status: PaymentStatus = PaymentStatus.PENDING
    payment_link_id: str | None = None
    checkout_url: str | None = None
    qr_code: str | None = None
    superseded_by: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    paid_at: datetime | None = None
