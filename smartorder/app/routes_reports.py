"""Revenue reporting routes."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from .deps import get_reports
from .services import RevenueReports
from .utils.responses import ok

router = APIRouter(prefix="/api/reports")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _render(data: dict) -> dict:
    data = dict(data)
    data["orders"] = [o.to_doc() for o in data["orders"]]
    return data


@router.get("/revenue")
async def revenue_stats(period: str = "today", reports: RevenueReports = Depends(get_reports)) -> dict:
    """Return revenue for ``today``, ``week``, ``month``, ``7days`` or ``30days``."""

    return ok(_render(await reports.revenue_stats(period)))


@router.get("/revenue/range")
async def revenue_by_range(
    start: datetime, end: datetime, reports: RevenueReports = Depends(get_reports)
) -> dict:
    """Return revenue for orders completed between ``start`` and ``end``.

    Naive timestamps are taken as UTC.
    """

    return ok(_render(await reports.revenue_by_range(_aware(start), _aware(end))))
