"""Payment routes: checkout links, polling, cash settlement and webhooks."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from .deps import get_payments
from .services import PaymentReconciliation
from .utils.responses import ok

router = APIRouter(prefix="/api/payments")


class PaymentRequestPayload(BaseModel):
    ref: str
    amount: int | None = None


class CancelPayload(BaseModel):
    reason: str | None = None


class CashPayload(BaseModel):
    table_id: str


@router.post("")
async def request_payment(
    payload: PaymentRequestPayload, payments: PaymentReconciliation = Depends(get_payments)
) -> dict:
    """Create a checkout link for an order id or a table id."""

    payment = await payments.request_payment(payload.ref, payload.amount)
    return ok(payment.to_doc())


@router.get("")
async def list_payments(
    ref_id: str | None = None, payments: PaymentReconciliation = Depends(get_payments)
) -> dict:
    return ok([p.to_doc() for p in await payments.list_payments(ref_id)])


@router.post("/cash")
async def cash_settle(
    payload: CashPayload, payments: PaymentReconciliation = Depends(get_payments)
) -> dict:
    payment = await payments.cash_settle(payload.table_id)
    return ok(payment.to_doc())


@router.post("/webhook")
async def payos_webhook(
    body: Dict[str, Any] = Body(...), payments: PaymentReconciliation = Depends(get_payments)
) -> dict:
    payment = await payments.handle_webhook(body)
    return ok({"confirmed": payment is not None, "payment_id": payment.id if payment else None})


@router.get("/{ref}")
async def get_payment(ref: str, payments: PaymentReconciliation = Depends(get_payments)) -> dict:
    return ok((await payments.get_payment(ref)).to_doc())


@router.post("/{ref}/poll")
async def poll_status(ref: str, payments: PaymentReconciliation = Depends(get_payments)) -> dict:
    status = await payments.poll_status(ref)
    payment = await payments.get_payment(ref)
    return ok({"status": status.value, "payment": payment.to_doc()})


@router.post("/{ref}/confirm")
async def confirm_payment(ref: str, payments: PaymentReconciliation = Depends(get_payments)) -> dict:
    """Record a confirmation received out of band. Safe to repeat."""

    return ok((await payments.on_payment_confirmed(ref)).to_doc())


@router.post("/{ref}/cancel")
async def cancel_payment(
    ref: str,
    payload: CancelPayload | None = None,
    payments: PaymentReconciliation = Depends(get_payments),
) -> dict:
    reason = payload.reason if payload else None
    return ok((await payments.cancel_payment(ref, reason)).to_doc())
