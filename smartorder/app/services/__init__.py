"""Service layer wiring the engines around one document store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..gateway import PayOSClient
from ..store import DocumentStore
from ..utils.clock import utcnow
from .menu_catalog import MenuCatalog
from .order_engine import OrderEngine
from .payment_service import PaymentReconciliation
from .revenue import RevenueReports
from .table_engine import TableStateEngine


@dataclass
class Services:
    store: DocumentStore
    gateway: PayOSClient
    menu: MenuCatalog
    tables: TableStateEngine
    orders: OrderEngine
    payments: PaymentReconciliation
    reports: RevenueReports

    async def aclose(self) -> None:
        await self.gateway.aclose()
        await self.store.close()


def build_services(
    store: DocumentStore,
    gateway: PayOSClient,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    """Construct every engine with explicit collaborators."""

    menu = MenuCatalog(store)
    tables = TableStateEngine(store, clock)
    orders = OrderEngine(store, tables, menu, clock)
    payments = PaymentReconciliation(store, orders, tables, gateway, clock)
    orders.cancel_listeners.append(payments.on_order_cancelled)
    return Services(
        store=store,
        gateway=gateway,
        menu=menu,
        tables=tables,
        orders=orders,
        payments=payments,
        reports=RevenueReports(store, clock),
    )


__all__ = [
    "Services",
    "build_services",
    "MenuCatalog",
    "OrderEngine",
    "PaymentReconciliation",
    "RevenueReports",
    "TableStateEngine",
]
