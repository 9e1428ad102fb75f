import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from smartorder.app.middlewares.logging import LoggingMiddleware
from smartorder.app.middlewares.request_id import RequestIdMiddleware, request_id_ctx
from smartorder.app.obs.logging import JsonFormatter, RequestIdFilter


def _make_app():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    test_app.add_middleware(LoggingMiddleware)

    @test_app.get("/health")
    async def health():
        return {"ok": True}

    @test_app.post("/echo")
    async def echo(data: dict):
        return data

    return test_app


def test_request_id_propagation(monkeypatch, caplog):
    monkeypatch.setattr("smartorder.app.middlewares.logging.LOG_SAMPLE_2XX", 1)
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        resp = client.get("/health", headers={"X-Request-ID": "abc"})
    assert resp.headers["X-Request-ID"] == "abc"
    data = json.loads(caplog.messages[1])
    assert data["req_id"] == "abc"
    assert data["status"] == 200


def test_request_id_generation(monkeypatch, caplog):
    monkeypatch.setattr("smartorder.app.middlewares.logging.LOG_SAMPLE_2XX", 1)
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        resp = client.get("/health")
    rid = resp.headers["X-Request-ID"]
    assert rid
    assert json.loads(caplog.messages[1])["req_id"] == rid


def test_body_redaction(monkeypatch, caplog):
    monkeypatch.setattr("smartorder.app.middlewares.logging.LOG_SAMPLE_2XX", 1)
    client = TestClient(_make_app())
    payload = {
        "orderCode": 123,
        "signature": "abcdef",
        "data": {"checksum_key": "k", "phone": "0901234567"},
    }
    with caplog.at_level(logging.INFO, logger="api"):
        client.post("/echo", json=payload, params={"email": "guest@example.com"})
    inbound = json.loads(caplog.messages[0])
    assert inbound["body"]["orderCode"] == 123
    assert inbound["body"]["signature"] == "***"
    assert inbound["body"]["data"] == {"checksum_key": "***", "phone": "***"}
    assert inbound["query"]["email"] == "***"


def test_2xx_sampling_can_silence_success(monkeypatch, caplog):
    monkeypatch.setattr("smartorder.app.middlewares.logging.LOG_SAMPLE_2XX", 0)
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="api"):
        for _ in range(5):
            client.get("/health")
    assert caplog.messages == []


def test_json_logger_redaction():
    formatter = JsonFormatter()
    record = logging.LogRecord(
        "payments",
        logging.WARNING,
        __file__,
        0,
        "call 0901234567 email foo@example.com api_key=0123456789abcdef0123",
        (),
        None,
    )
    record.table_id = "tang1-1"
    data = json.loads(formatter.format(record))
    msg = data["msg"]
    assert "0901234567" not in msg
    assert "foo@example.com" not in msg
    assert "0123456789abcdef0123" not in msg
    assert data["logger"] == "payments"
    assert data["level"] == "WARNING"
    assert data["table_id"] == "tang1-1"
    assert "order_id" not in data


def test_request_id_filter_reads_context():
    record = logging.LogRecord("api", logging.INFO, __file__, 0, "hi", (), None)
    token = request_id_ctx.set("rid-7")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx.reset(token)
    assert record.req_id == "rid-7"


def test_malformed_request_id_is_replaced():
    client = TestClient(_make_app())
    resp = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    rid = resp.headers["X-Request-ID"]
    assert rid != "bad id with spaces"
    assert len(rid) == 36
