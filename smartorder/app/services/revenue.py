"""Revenue figures over settled orders."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from ..domain import Order, OrderStatus
from ..errors import ValidationError
from ..store import ORDERS, DocumentStore
from ..utils.clock import utcnow

PERIODS = ("today", "week", "month", "7days", "30days")


def period_start(period: str, now: datetime) -> datetime:
    """Return the start of ``period`` relative to ``now``.

    Every period starts at midnight; the rolling ones count whole days back.
    """

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return midnight
    if period == "week":
        return midnight - timedelta(days=midnight.weekday())
    if period == "month":
        return midnight.replace(day=1)
    if period == "7days":
        return midnight - timedelta(days=7)
    if period == "30days":
        return midnight - timedelta(days=30)
    raise ValidationError(
        f"unknown period {period!r}; expected one of {', '.join(PERIODS)}", entity="report"
    )


class RevenueReports:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def revenue_by_range(self, start: datetime, end: datetime) -> dict:
        """Summarise orders completed in ``[start, end]``.

        Orders are listed newest first.
        """

        if start > end:
            raise ValidationError("start must not be after end", entity="report")
        docs = await self.store.query(ORDERS, status=OrderStatus.COMPLETED)
        orders = [
            order
            for order in map(Order.from_doc, docs)
            if order.completed_at is not None and start <= order.completed_at <= end
        ]
        orders.sort(key=lambda o: o.completed_at, reverse=True)
        total = sum(o.total_amount for o in orders)
        return {
            "start": start,
            "end": end,
            "total": total,
            "count": len(orders),
            "average": total // len(orders) if orders else 0,
            "orders": orders,
        }

    async def revenue_stats(self, period: str = "today") -> dict:
        now = self.clock()
        data = await self.revenue_by_range(period_start(period, now), now)
        data["period"] = period
        return data
