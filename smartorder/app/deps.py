"""FastAPI dependencies resolving the engines attached to the app."""

from __future__ import annotations

from fastapi import Request

from .services import (
    MenuCatalog,
    OrderEngine,
    PaymentReconciliation,
    RevenueReports,
    Services,
    TableStateEngine,
)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_tables(request: Request) -> TableStateEngine:
    return get_services(request).tables


def get_orders(request: Request) -> OrderEngine:
    return get_services(request).orders


def get_menu(request: Request) -> MenuCatalog:
    return get_services(request).menu


def get_payments(request: Request) -> PaymentReconciliation:
    return get_services(request).payments


def get_reports(request: Request) -> RevenueReports:
    return get_services(request).reports
