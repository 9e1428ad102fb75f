"""Payment reconciliation.

Issues gateway checkout links for an order or a whole table, follows each
payment to a terminal state and settles the orders it covers. Cash
settlement takes the same path without the gateway round trip.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Tuple

from ..domain import Order, Payment, PaymentMethod, PaymentStatus, is_open, map_gateway_status
from ..errors import ConcurrentUpdate, GatewayError, InvalidState, NotFound, ValidationError
from ..gateway import PayOSClient
from ..gateway.payos import SUCCESS_CODE
from ..routes_metrics import payments_total
from ..store import (
    ORDERS,
    PAYMENTS,
    ConcurrentModification,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    Subscription,
)
from ..utils.callbacks import invoke
from ..utils.clock import utcnow
from .order_engine import OrderEngine
from .table_engine import TableStateEngine

logger = logging.getLogger("payments")

# Gateway order codes are positive integers; keep them to nine digits.
ORDER_CODE_MODULUS = 1_000_000_000
DESCRIPTION = "Thanh toan ban {number}"
ORDER_CANCELLED = "order cancelled"


class PaymentReconciliation:
    """Drive payments from request to settlement."""

    def __init__(
        self,
        store: DocumentStore,
        orders: OrderEngine,
        tables: TableStateEngine,
        gateway: PayOSClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.orders = orders
        self.tables = tables
        self.gateway = gateway
        self.clock = clock
        self._last_code = 0

    # lookup -------------------------------------------------------------

    async def get_payment(self, ref: int | str) -> Payment:
        """Find a payment by its order code or its gateway ``paymentLinkId``."""

        ref = str(ref).strip()
        if not ref:
            raise ValidationError("payment reference is required", entity="payment")
        doc = await self.store.get(PAYMENTS, ref)
        if doc is None:
            docs = await self.store.query(PAYMENTS, payment_link_id=ref)
            doc = docs[0] if docs else None
        if doc is None:
            raise NotFound("payment", ref)
        return Payment.from_doc(doc)

    async def list_payments(self, ref_id: str | None = None) -> List[Payment]:
        where = {"ref_id": ref_id} if ref_id else {}
        payments = [Payment.from_doc(doc) for doc in await self.store.query(PAYMENTS, **where)]
        return sorted(payments, key=lambda p: p.order_code, reverse=True)

    async def _unit(self, ref: str) -> Tuple[str, str, str, List[Order]]:
        """Resolve ``ref`` to ``(ref_type, ref_id, table_id, open_orders)``.

        Order ids win over table ids; a table covers all its open orders.
        """

        doc = await self.store.get(ORDERS, ref)
        if doc is not None:
            order = Order.from_doc(doc)
            if not is_open(order.status):
                raise InvalidState(
                    "order is already closed",
                    entity="order",
                    entity_id=order.id,
                    state=order.status.value,
                )
            return "order", order.id, order.table_id, [order]

        try:
            table = await self.tables.get_table(ref)
        except NotFound:
            raise NotFound("order_or_table", ref) from None
        open_orders = [o for o in await self.orders.list_orders_by_table(table.id) if is_open(o.status)]
        if not open_orders:
            raise InvalidState(
                "table has no open orders",
                entity="table",
                entity_id=table.id,
                state=table.status.value,
            )
        return "table", table.id, table.id, open_orders

    # gateway payments ---------------------------------------------------

    def _next_order_code(self) -> int:
        millis = int(self.clock().timestamp() * 1000) % ORDER_CODE_MODULUS
        code = max(millis, self._last_code + 1)
        if code >= ORDER_CODE_MODULUS:
            code = 1
        self._last_code = code
        return code

    async def request_payment(self, ref: str, amount: int | None = None) -> Payment:
        """Create a gateway checkout link for an order or a table.

        ``amount`` defaults to the outstanding total and must equal it when
        given, so a stale screen cannot request the wrong sum. Earlier
        pending payments for the same reference are superseded.
        """

        if not ref:
            raise ValidationError("order or table id is required", entity="payment")
        ref_type, ref_id, table_id, open_orders = await self._unit(ref)
        outstanding = sum(o.total_amount for o in open_orders)
        if amount is None:
            amount = outstanding
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("amount must be an integer", entity="payment")
        if amount != outstanding:
            raise ValidationError(
                f"amount {amount} does not match outstanding total {outstanding}",
                entity=ref_type,
                entity_id=ref_id,
                hint="refresh the bill and retry",
            )
        if amount <= 0:
            raise ValidationError("nothing to pay", entity=ref_type, entity_id=ref_id)

        table = await self.tables.get_table(table_id)
        items = [
            {"name": line.name, "quantity": line.quantity, "price": line.unit_price}
            for order in open_orders
            for line in order.items
        ]
        code = self._next_order_code()
        data = await self.gateway.create_payment_link(
            code, amount, DESCRIPTION.format(number=table.number), items
        )

        now = self.clock()
        payment = Payment(
            id=str(code),
            order_code=code,
            ref_type=ref_type,
            ref_id=ref_id,
            table_id=table_id,
            order_ids=[o.id for o in open_orders],
            amount=amount,
            payment_link_id=data.get("paymentLinkId"),
            checkout_url=data.get("checkoutUrl"),
            qr_code=data.get("qrCode"),
            created_at=now,
            updated_at=now,
        )
        try:
            await self.store.create(PAYMENTS, payment.id, payment.to_doc())
        except DocumentExists as exc:
            raise InvalidState(
                "payment order code already used", entity="payment", entity_id=payment.id
            ) from exc
        payments_total.labels(status=PaymentStatus.PENDING.value).inc()
        logger.info(
            "payment requested for %s %s",
            ref_type,
            ref_id,
            extra={"payment_id": payment.id, "table_id": table_id},
        )
        await self._supersede(payment)
        await self.orders.attach_payment(payment.order_ids, payment.id, PaymentStatus.PENDING)
        return payment

    async def _supersede(self, payment: Payment) -> None:
        """Cancel locally every other pending payment covering the same orders."""

        covered = set(payment.order_ids)
        for doc in await self.store.query(PAYMENTS, table_id=payment.table_id, status=PaymentStatus.PENDING):
            other = Payment.from_doc(doc)
            if other.id == payment.id or not covered.intersection(other.order_ids):
                continue

            def _cancel(doc: dict) -> dict | None:
                current = Payment.from_doc(doc)
                if current.status != PaymentStatus.PENDING:
                    return None
                current.status = PaymentStatus.CANCELLED
                current.superseded_by = payment.id
                current.updated_at = self.clock()
                return current.to_doc()

            await self._update(other.id, _cancel)
            logger.info("payment superseded by %s", payment.id, extra={"payment_id": other.id})

    async def poll_status(self, ref: int | str) -> PaymentStatus:
        """Ask the gateway for the payment's status and apply it."""

        payment = await self.get_payment(ref)
        if payment.status == PaymentStatus.PAID or payment.method == PaymentMethod.CASH:
            return payment.status
        data = await self.gateway.get_payment(payment.order_code)
        status = map_gateway_status(data.get("status"))
        if status is None:
            raise GatewayError(
                f"unknown gateway status {data.get('status')!r}",
                entity="payment",
                entity_id=payment.id,
                state=payment.status.value,
            )
        if status == PaymentStatus.PAID:
            await self.on_payment_confirmed(payment.id)
        elif status != PaymentStatus.PENDING and payment.status == PaymentStatus.PENDING:
            await self._close(payment, status)
        return status

    async def on_payment_confirmed(self, ref: int | str) -> Payment:
        """Mark a payment PAID and settle the orders it covers.

        Confirming an already paid payment changes nothing.
        """

        payment = await self.get_payment(ref)
        newly_paid = False
        previous = payment.status

        def _paid(doc: dict) -> dict | None:
            nonlocal newly_paid, previous
            current = Payment.from_doc(doc)
            previous = current.status
            if current.status == PaymentStatus.PAID:
                newly_paid = False
                return None
            now = self.clock()
            current.status = PaymentStatus.PAID
            current.paid_at = now
            current.updated_at = now
            newly_paid = True
            return current.to_doc()

        payment = Payment.from_doc(await self._update(payment.id, _paid))
        if not newly_paid:
            logger.info("payment already confirmed", extra={"payment_id": payment.id})
            return payment

        if previous != PaymentStatus.PENDING:
            logger.warning(
                "confirmation received for %s payment",
                previous.value,
                extra={"payment_id": payment.id, "table_id": payment.table_id},
            )
        payments_total.labels(status=PaymentStatus.PAID.value).inc()
        settled = await self.orders.settle_orders(
            payment.order_ids, method=payment.method, payment_id=payment.id
        )
        if not settled:
            logger.warning(
                "confirmed payment of %d covers no open orders",
                payment.amount,
                extra={"payment_id": payment.id, "table_id": payment.table_id},
            )
        logger.info("payment confirmed", extra={"payment_id": payment.id, "table_id": payment.table_id})
        return payment

    async def cancel_payment(self, ref: int | str, reason: str | None = None) -> Payment:
        """Cancel a pending checkout link at the gateway and locally."""

        payment = await self.get_payment(ref)
        if payment.status != PaymentStatus.PENDING:
            raise InvalidState(
                "only pending payments can be cancelled",
                entity="payment",
                entity_id=payment.id,
                state=payment.status.value,
            )
        if payment.method == PaymentMethod.GATEWAY:
            await self.gateway.cancel_payment_link(payment.order_code, reason)
        return await self._close(payment, PaymentStatus.CANCELLED, reason)

    async def on_order_cancelled(self, order: Order) -> List[Payment]:
        """Void every pending payment that covers the cancelled ``order``.

        The covered amount no longer matches what is owed. A gateway failure
        is logged and the payment is still closed locally.
        """

        voided = []
        docs = await self.store.query(PAYMENTS, table_id=order.table_id, status=PaymentStatus.PENDING)
        for payment in map(Payment.from_doc, docs):
            if order.id not in payment.order_ids:
                continue
            if payment.method == PaymentMethod.GATEWAY:
                try:
                    await self.gateway.cancel_payment_link(payment.order_code, ORDER_CANCELLED)
                except GatewayError:
                    logger.warning(
                        "could not cancel checkout link at the gateway",
                        exc_info=True,
                        extra={"payment_id": payment.id, "order_id": order.id},
                    )
            voided.append(await self._close(payment, PaymentStatus.CANCELLED, ORDER_CANCELLED))
        return voided

    async def _close(
        self, payment: Payment, status: PaymentStatus, reason: str | None = None
    ) -> Payment:
        def _apply(doc: dict) -> dict | None:
            current = Payment.from_doc(doc)
            if current.status != PaymentStatus.PENDING:
                return None
            current.status = status
            current.cancellation_reason = reason
            current.updated_at = self.clock()
            return current.to_doc()

        payment = Payment.from_doc(await self._update(payment.id, _apply))
        if payment.status == status:
            payments_total.labels(status=status.value).inc()
            await self.orders.attach_payment(payment.order_ids, payment.id, status)
            logger.info("payment %s", status.value.lower(), extra={"payment_id": payment.id})
        return payment

    async def handle_webhook(self, body: dict) -> Payment | None:
        """Apply a signed gateway notification.

        Returns the confirmed payment, or ``None`` when the notification
        does not report a successful payment.
        """

        data = self.gateway.verify_webhook(body)
        code = data.get("code", body.get("code"))
        if str(code) != SUCCESS_CODE or body.get("success") is False:
            logger.info("webhook without success code %s", code)
            return None
        if data.get("orderCode") is None:
            raise ValidationError("webhook has no orderCode", entity="payment")
        return await self.on_payment_confirmed(data["orderCode"])

    # cash ---------------------------------------------------------------

    async def cash_settle(self, table_id: str) -> Payment:
        """Settle every open order on ``table_id`` in cash and close it."""

        table = await self.tables.get_table(table_id)
        open_orders = [o for o in await self.orders.list_orders_by_table(table_id) if is_open(o.status)]
        if not open_orders:
            raise InvalidState(
                "table has no open orders",
                entity="table",
                entity_id=table_id,
                state=table.status.value,
            )
        now = self.clock()
        payment = Payment(
            id="0",
            order_code=0,
            ref_type="table",
            ref_id=table_id,
            table_id=table_id,
            order_ids=[o.id for o in open_orders],
            amount=sum(o.total_amount for o in open_orders),
            method=PaymentMethod.CASH,
            status=PaymentStatus.PAID,
            created_at=now,
            updated_at=now,
            paid_at=now,
        )
        while True:
            payment.order_code = self._next_order_code()
            payment.id = str(payment.order_code)
            try:
                await self.store.create(PAYMENTS, payment.id, payment.to_doc())
                break
            except DocumentExists:
                continue
        payments_total.labels(status=PaymentStatus.PAID.value).inc()
        await self._supersede(payment)
        await self.orders.settle_orders(payment.order_ids, method=PaymentMethod.CASH, payment_id=payment.id)
        logger.info(
            "table settled in cash for %d", payment.amount, extra={"table_id": table_id, "payment_id": payment.id}
        )
        return payment

    # live views ---------------------------------------------------------

    async def subscribe_payment(self, ref: int | str, callback) -> Subscription:
        payment = await self.get_payment(ref)

        async def _deliver(docs):
            await invoke(callback, Payment.from_doc(docs[0]) if docs else None)

        return await self.store.subscribe(PAYMENTS, _deliver, id=payment.id)

    async def _update(self, payment_id: str, fn) -> dict:
        try:
            return await self.store.update(PAYMENTS, payment_id, fn)
        except DocumentMissing as exc:
            raise NotFound("payment", payment_id) from exc
        except ConcurrentModification as exc:
            raise ConcurrentUpdate("payment", payment_id) from exc
