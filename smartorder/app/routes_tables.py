"""Table routes: venue setup, floor listings and consistency sweeps."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from .deps import get_orders, get_tables
from .services import OrderEngine, TableStateEngine
from .utils.responses import ok

router = APIRouter(prefix="/api/tables")


@router.post("/setup")
async def setup_tables(request: Request, tables: TableStateEngine = Depends(get_tables)) -> dict:
    """Create the configured table inventory. Existing tables are kept."""

    created = await tables.initialize_tables(request.app.state.settings.table_areas)
    return ok({"created": created})


@router.get("")
async def list_tables(area: str | None = None, tables: TableStateEngine = Depends(get_tables)) -> dict:
    rows = await (tables.list_tables_by_area(area) if area else tables.list_tables())
    return ok([t.to_doc() for t in rows])


@router.get("/stats")
async def table_stats(tables: TableStateEngine = Depends(get_tables)) -> dict:
    return ok(await tables.stats())


@router.post("/reconcile")
async def reconcile_all(tables: TableStateEngine = Depends(get_tables)) -> dict:
    """Repair every table whose status or bill disagrees with its orders."""

    return ok({"repaired": await tables.reconcile_all()})


@router.get("/{table_id}")
async def get_table(
    table_id: str,
    tables: TableStateEngine = Depends(get_tables),
    orders: OrderEngine = Depends(get_orders),
) -> dict:
    table = await tables.get_table(table_id)
    active = await orders.get_active_order(table_id)
    data = table.to_doc()
    data["duration_minutes"] = table.duration_minutes(tables.clock())
    data["active_order_id"] = active.id if active else None
    return ok(data)


@router.get("/{table_id}/orders")
async def table_orders(
    table_id: str,
    tables: TableStateEngine = Depends(get_tables),
    orders: OrderEngine = Depends(get_orders),
) -> dict:
    await tables.get_table(table_id)
    rows = await orders.list_orders_by_table(table_id)
    return ok(
        {
            "orders": [o.to_doc() for o in rows],
            "open_bill_total": await orders.open_bill_total(table_id),
        }
    )


@router.post("/{table_id}/reconcile")
async def reconcile_table(table_id: str, tables: TableStateEngine = Depends(get_tables)) -> dict:
    repaired = await tables.reconcile_table(table_id)
    table = await tables.get_table(table_id)
    return ok({"repaired": repaired, "table": table.to_doc()})
