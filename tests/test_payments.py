"""Payment reconciliation against a fake PayOS gateway."""

import json
import logging

import pytest
from prometheus_client import REGISTRY

from smartorder.app.domain import OrderStatus, PaymentMethod, PaymentStatus, TableStatus
from smartorder.app.errors import GatewayError, InvalidState, NotFound, ValidationError
from smartorder.app.store import PAYMENTS
from smartorder.app.utils.signing import sign_payment_request


async def _open_with_items(services, table_id="tang1-1", **items):
    order = await services.orders.create_order(table_id, 2)
    for item_id, qty in items.items():
        order = await services.orders.add_item(order.id, item_id.replace("_", "-"), qty)
    return order


def _settled(method: str) -> float:
    return REGISTRY.get_sample_value("orders_settled_total", {"method": method}) or 0.0


@pytest.mark.anyio
async def test_scenario_e_request_then_confirm_twice(services, payos):
    order = await _open_with_items(services, pho_bo=2, tra_da=1)
    assert order.total_amount == 150000

    payment = await services.payments.request_payment(order.id, 150000)
    assert payment.status == PaymentStatus.PENDING
    assert payment.checkout_url.startswith("https://pay.payos.vn/")
    assert payment.payment_link_id == f"link{payment.order_code}"
    assert payment.ref_type == "order"
    assert (await services.orders.get_order(order.id)).payment_id == payment.id

    before = _settled("payos")
    confirmed = await services.payments.on_payment_confirmed(payment.payment_link_id)
    assert confirmed.status == PaymentStatus.PAID
    order_after = await services.orders.get_order(order.id)
    assert order_after.status == OrderStatus.COMPLETED
    assert order_after.payment_status == PaymentStatus.PAID
    table = await services.tables.get_table("tang1-1")
    assert table.status == TableStatus.VACANT
    assert table.bill_total == 0

    again = await services.payments.on_payment_confirmed(payment.order_code)
    assert again.paid_at == confirmed.paid_at
    assert _settled("payos") == before + 1
    assert (await services.orders.get_order(order.id)).completed_at == order_after.completed_at


@pytest.mark.anyio
async def test_request_is_signed_with_canonical_fields(services, payos):
    order = await _open_with_items(services, pho_bo=1)
    await services.payments.request_payment(order.id)

    request = payos.requests[-1]
    assert request.method == "POST"
    assert request.url.path == "/v2/payment-requests"
    assert request.headers["x-client-id"] == "client-id"
    assert request.headers["x-api-key"] == "api-key"
    body = json.loads(request.content)
    assert body["amount"] == 70000
    assert body["description"] == "Thanh toan ban 1"
    assert body["items"] == [{"name": "Phở bò", "quantity": 1, "price": 70000}]
    assert body["signature"] == sign_payment_request(payos.checksum_key, body)
    assert 0 < body["orderCode"] < 1_000_000_000


@pytest.mark.anyio
async def test_amount_must_match_outstanding(services):
    order = await _open_with_items(services, pho_bo=1)
    with pytest.raises(ValidationError) as exc_info:
        await services.payments.request_payment(order.id, 50000)
    assert exc_info.value.hint
    empty = await services.orders.create_order("tang1-3", 2)
    with pytest.raises(ValidationError):
        await services.payments.request_payment(empty.id)
    with pytest.raises(NotFound):
        await services.payments.request_payment("nothing-here")


@pytest.mark.anyio
async def test_table_payment_covers_every_open_order(services):
    first = await _open_with_items(services, pho_bo=1)
    second = await services.orders.create_order("tang1-1", 2)
    await services.orders.add_item(second.id, "tra-da", 3)

    payment = await services.payments.request_payment("tang1-1")
    assert payment.ref_type == "table"
    assert payment.amount == 100000
    assert set(payment.order_ids) == {first.id, second.id}

    await services.payments.on_payment_confirmed(payment.id)
    for order_id in (first.id, second.id):
        assert (await services.orders.get_order(order_id)).status == OrderStatus.COMPLETED
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.VACANT


@pytest.mark.anyio
async def test_new_request_supersedes_pending_one(services, clock):
    order = await _open_with_items(services, pho_bo=1)
    old = await services.payments.request_payment(order.id)
    new = await services.payments.request_payment(order.id)
    assert new.order_code > old.order_code

    stale = await services.payments.get_payment(old.id)
    assert stale.status == PaymentStatus.CANCELLED
    assert stale.superseded_by == new.id
    assert (await services.orders.get_order(order.id)).payment_id == new.id

    # money arriving on the superseded link is still honoured
    paid = await services.payments.on_payment_confirmed(old.id)
    assert paid.status == PaymentStatus.PAID
    assert (await services.orders.get_order(order.id)).status == OrderStatus.COMPLETED


@pytest.mark.anyio
async def test_gateway_failures_leave_state_untouched(services, payos, store):
    order = await _open_with_items(services, pho_bo=1)

    payos.reject_with = "20"
    with pytest.raises(GatewayError) as exc_info:
        await services.payments.request_payment(order.id)
    assert exc_info.value.gateway_code == "20"

    payos.reject_with = None
    payos.network_down = True
    with pytest.raises(GatewayError):
        await services.payments.request_payment(order.id)

    payos.network_down = False
    payos.tamper = True
    with pytest.raises(GatewayError):
        await services.payments.request_payment(order.id)

    assert await store.query(PAYMENTS) == []
    order = await services.orders.get_order(order.id)
    assert order.status == OrderStatus.PENDING
    assert order.payment_id is None


@pytest.mark.anyio
async def test_unconfigured_gateway_sends_nothing(store, clock, payos):
    import httpx

    from smartorder.app.gateway import PayOSClient
    from smartorder.app.services import build_services
    from config import DEFAULT_AREAS

    gateway = PayOSClient(None, None, None, transport=httpx.MockTransport(payos))
    svc = build_services(store, gateway, clock)
    await svc.tables.initialize_tables(DEFAULT_AREAS)
    await svc.menu.initialize_categories()
    await svc.menu.initialize_menu()
    order = await _open_with_items(svc, pho_bo=1)
    with pytest.raises(GatewayError, match="not configured"):
        await svc.payments.request_payment(order.id)
    assert payos.requests == []
    await svc.aclose()


@pytest.mark.anyio
async def test_poll_status_applies_gateway_state(services, payos):
    order = await _open_with_items(services, pho_bo=1)
    payment = await services.payments.request_payment(order.id)
    assert await services.payments.poll_status(payment.id) == PaymentStatus.PENDING

    payos.statuses[payment.id] = "PAID"
    assert await services.payments.poll_status(payment.payment_link_id) == PaymentStatus.PAID
    assert (await services.orders.get_order(order.id)).status == OrderStatus.COMPLETED

    other = await _open_with_items(services, "tang1-3", tra_da=2)
    expiring = await services.payments.request_payment(other.id)
    payos.statuses[expiring.id] = "EXPIRED"
    assert await services.payments.poll_status(expiring.id) == PaymentStatus.CANCELLED
    assert (await services.payments.get_payment(expiring.id)).status == PaymentStatus.CANCELLED
    assert (await services.orders.get_order(other.id)).status == OrderStatus.PENDING


@pytest.mark.anyio
async def test_cancel_payment(services, payos):
    order = await _open_with_items(services, pho_bo=1)
    payment = await services.payments.request_payment(order.id)
    cancelled = await services.payments.cancel_payment(payment.id, "khách đổi ý")
    assert cancelled.status == PaymentStatus.CANCELLED
    assert cancelled.cancellation_reason == "khách đổi ý"

    request = payos.requests[-1]
    assert request.method == "PUT"
    assert json.loads(request.content) == {"cancellationReason": "khách đổi ý"}
    with pytest.raises(InvalidState):
        await services.payments.cancel_payment(payment.id)


@pytest.mark.anyio
async def test_webhook_confirms_payment(services, payos):
    order = await _open_with_items(services, pho_bo=1)
    payment = await services.payments.request_payment(order.id)

    failed = payos.webhook(payment.order_code, payment.amount, code="01")
    assert await services.payments.handle_webhook(failed) is None

    body = payos.webhook(payment.order_code, payment.amount)
    confirmed = await services.payments.handle_webhook(body)
    assert confirmed.id == payment.id
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.VACANT

    forged = payos.webhook(payment.order_code, payment.amount)
    forged["data"]["amount"] = 1
    with pytest.raises(GatewayError):
        await services.payments.handle_webhook(forged)


@pytest.mark.anyio
async def test_cash_settle_records_payment_and_closes(services, payos):
    order = await _open_with_items(services, pho_bo=1, tra_da=2)
    await services.orders.advance_status(order.id, OrderStatus.PREPARING)
    pending = await services.payments.request_payment(order.id)
    sent = len(payos.requests)

    cash = await services.payments.cash_settle("tang1-1")
    assert cash.method == PaymentMethod.CASH
    assert cash.status == PaymentStatus.PAID
    assert cash.amount == 90000
    assert len(payos.requests) == sent

    order = await services.orders.get_order(order.id)
    assert order.status == OrderStatus.COMPLETED
    assert order.payment_id == cash.id
    assert (await services.payments.get_payment(pending.id)).superseded_by == cash.id
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.VACANT
    with pytest.raises(InvalidState):
        await services.payments.cash_settle("tang1-1")


@pytest.mark.anyio
async def test_closed_order_cannot_be_billed(services):
    order = await _open_with_items(services, pho_bo=1)
    await services.orders.cancel_order(order.id)
    with pytest.raises(InvalidState):
        await services.payments.request_payment(order.id)


@pytest.mark.anyio
async def test_payment_subscription(services):
    order = await _open_with_items(services, pho_bo=1)
    payment = await services.payments.request_payment(order.id)
    seen = []
    sub = await services.payments.subscribe_payment(payment.id, lambda p: seen.append(p.status))
    await services.payments.on_payment_confirmed(payment.id)
    sub.unsubscribe()
    assert seen == [PaymentStatus.PENDING, PaymentStatus.PAID]


@pytest.mark.anyio
async def test_items_locked_while_payment_pending(services):
    order = await _open_with_items(services, pho_bo=2, tra_da=1)
    payment = await services.payments.request_payment(order.id, 150000)

    with pytest.raises(InvalidState) as exc_info:
        await services.orders.add_item(order.id, "tra-da", 3)
    assert exc_info.value.state == "payment_pending"
    assert exc_info.value.hint
    with pytest.raises(InvalidState):
        await services.orders.remove_item(order.id, "pho-bo")
    assert (await services.orders.get_order(order.id)).total_amount == 150000
    assert (await services.tables.get_table("tang1-1")).bill_total == 150000

    await services.payments.cancel_payment(payment.id, "thêm món")
    order = await services.orders.add_item(order.id, "tra-da", 3)
    assert order.total_amount == 180000

    fresh = await services.payments.request_payment(order.id)
    assert fresh.amount == 180000
    await services.payments.on_payment_confirmed(fresh.id)
    assert (await services.orders.get_order(order.id)).status == OrderStatus.COMPLETED
    report = await services.reports.revenue_stats("today")
    assert report["total"] == 180000


@pytest.mark.anyio
async def test_cancelling_order_voids_its_pending_payment(services, payos, caplog):
    order = await _open_with_items(services, pho_bo=1)
    payment = await services.payments.request_payment(order.id)
    await services.orders.cancel_order(order.id)

    voided = await services.payments.get_payment(payment.id)
    assert voided.status == PaymentStatus.CANCELLED
    assert voided.cancellation_reason == "order cancelled"
    assert payos.requests[-1].method == "PUT"
    assert payos.statuses[payment.id] == "CANCELLED"
    assert (await services.tables.get_table("tang1-1")).status == TableStatus.VACANT

    # money that still arrives is recorded but does not revive the order
    with caplog.at_level(logging.WARNING, logger="payments"):
        late = await services.payments.on_payment_confirmed(payment.id)
    assert late.status == PaymentStatus.PAID
    assert (await services.orders.get_order(order.id)).status == OrderStatus.CANCELLED
    assert any("covers no open orders" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_cancelling_one_order_voids_table_payment(services, payos, caplog):
    first = await _open_with_items(services, "tang1-2", pho_bo=1)
    second = await services.orders.create_order("tang1-2", 2)
    await services.orders.add_item(second.id, "tra-da", 2)
    payment = await services.payments.request_payment("tang1-2")
    assert payment.amount == 90000

    payos.network_down = True
    with caplog.at_level(logging.WARNING, logger="payments"):
        await services.orders.cancel_order(second.id)
    payos.network_down = False
    assert any("could not cancel checkout link" in r.getMessage() for r in caplog.records)
    assert (await services.payments.get_payment(payment.id)).status == PaymentStatus.CANCELLED

    remaining = await services.orders.get_order(first.id)
    assert remaining.payment_status == PaymentStatus.CANCELLED
    await services.orders.add_item(first.id, "tra-da", 1)
    retry = await services.payments.request_payment("tang1-2")
    assert (retry.amount, retry.order_ids) == (80000, [first.id])


@pytest.mark.anyio
async def test_cancelling_unbilled_order_leaves_other_payments(services, payos):
    billed = await _open_with_items(services, "vip-1", pho_bo=1)
    payment = await services.payments.request_payment(billed.id)
    other = await services.orders.create_order("vip-1", 2)
    sent = len(payos.requests)

    await services.orders.cancel_order(other.id)
    assert len(payos.requests) == sent
    assert (await services.payments.get_payment(payment.id)).status == PaymentStatus.PENDING
