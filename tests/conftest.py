import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import DEFAULT_AREAS  # noqa: E402
from smartorder.app.gateway import PayOSClient  # noqa: E402
from smartorder.app.services import build_services  # noqa: E402
from smartorder.app.store import InMemoryDocumentStore  # noqa: E402
from smartorder.app.utils.signing import sign  # noqa: E402

CHECKSUM_KEY = "test-checksum-key"


class FakeClock:
    """Deterministic clock advanced by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 6, 11, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePayOS:
    """In-process stand-in for the PayOS merchant API."""

    def __init__(self, checksum_key: str = CHECKSUM_KEY) -> None:
        self.checksum_key = checksum_key
        self.requests: list[httpx.Request] = []
        self.statuses: dict[str, str] = {}
        self.reject_with: str | None = None
        self.network_down = False
        self.tamper = False

    def signed(self, data: dict) -> dict:
        return {"code": "00", "desc": "success", "data": data, "signature": sign(self.checksum_key, data)}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.reject_with:
            return httpx.Response(200, json={"code": self.reject_with, "desc": "rejected", "data": None})

        ref = request.url.path.rsplit("/", 1)[-1]
        if request.method == "POST":
            body = json.loads(request.content)
            ref = str(body["orderCode"])
            self.statuses[ref] = "PENDING"
            data = {
                "orderCode": body["orderCode"],
                "amount": body["amount"],
                "description": body["description"],
                "paymentLinkId": f"link{ref}",
                "checkoutUrl": f"https://pay.payos.vn/web/link{ref}",
                "qrCode": f"00020101021238570010A000000727{ref}",
                "status": "PENDING",
            }
        elif request.method == "PUT":
            self.statuses[ref] = "CANCELLED"
            data = {"orderCode": int(ref), "status": "CANCELLED"}
        else:
            data = {"orderCode": int(ref), "status": self.statuses.get(ref, "PENDING")}
        body = self.signed(data)
        if self.tamper:
            body["signature"] = "0" * 64
        return httpx.Response(200, json=body)

    def webhook(self, order_code: int, amount: int, code: str = "00") -> dict:
        data = {"orderCode": order_code, "amount": amount, "code": code, "desc": "success"}
        return {
            "code": code,
            "desc": "success",
            "success": code == "00",
            "data": data,
            "signature": sign(self.checksum_key, data),
        }


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def payos() -> FakePayOS:
    return FakePayOS()


@pytest.fixture
def gateway(payos) -> PayOSClient:
    return PayOSClient(
        "client-id",
        "api-key",
        CHECKSUM_KEY,
        base_url="https://payos.test",
        return_url="smartorder://ok",
        cancel_url="smartorder://cancel",
        transport=httpx.MockTransport(payos),
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
async def services(store, gateway, clock):
    svc = build_services(store, gateway, clock)
    await svc.tables.initialize_tables(DEFAULT_AREAS)
    await svc.menu.initialize_categories()
    await svc.menu.initialize_menu()
    yield svc
    await svc.aclose()
