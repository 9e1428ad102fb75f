"""Thin async client for the PayOS payment-link API."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import httpx

from ..errors import GatewayError
from ..routes_metrics import gateway_errors_total
from ..utils.signing import sign_payment_request, verify

SUCCESS_CODE = "00"
PAYMENT_REQUESTS = "/v2/payment-requests"
# PayOS rejects descriptions longer than this.
MAX_DESCRIPTION = 25

logger = logging.getLogger("payments")


class PayOSClient:
    """Create, query and cancel hosted checkout links.

    Every response is checked for the success sentinel and, when the gateway
    attached one, for a valid data signature. Any failure raises
    :class:`GatewayError` and affects only that request.
    """

    def __init__(
        self,
        client_id: str | None,
        api_key: str | None,
        checksum_key: str | None,
        *,
        base_url: str = "https://api-merchant.payos.vn",
        return_url: str = "",
        cancel_url: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.api_key = api_key
        self.checksum_key = checksum_key
        self.return_url = return_url
        self.cancel_url = cancel_url
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings, transport: httpx.AsyncBaseTransport | None = None) -> "PayOSClient":
        return cls(
            settings.payos_client_id,
            settings.payos_api_key,
            settings.payos_checksum_key,
            base_url=settings.payos_api_base_url,
            return_url=settings.payos_return_url,
            cancel_url=settings.payos_cancel_url,
            timeout=settings.payos_timeout_secs,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.api_key and self.checksum_key)

    def _headers(self) -> dict[str, str]:
        return {"x-client-id": self.client_id or "", "x-api-key": self.api_key or ""}

    def _fail(self, message: str, *, reason: str, gateway_code: str | None = None) -> GatewayError:
        gateway_errors_total.labels(reason=reason).inc()
        logger.warning("gateway error: %s", message, extra={"status": gateway_code})
        return GatewayError(message, gateway_code=gateway_code)

    async def _request(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict:
        if not self.configured:
            raise self._fail("gateway not configured", reason="config")
        try:
            resp = await self._http.request(method, path, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise self._fail(f"gateway unreachable: {exc}", reason="network") from exc

        try:
            body = resp.json()
        except ValueError:
            raise self._fail(
                f"malformed gateway response (HTTP {resp.status_code})", reason="malformed"
            ) from None
        if not isinstance(body, dict):
            raise self._fail("malformed gateway response", reason="malformed")

        code = str(body.get("code")) if body.get("code") is not None else None
        if resp.is_error or code != SUCCESS_CODE:
            message = body.get("desc") or f"gateway returned HTTP {resp.status_code}"
            raise self._fail(message, reason="rejected", gateway_code=code)

        data = body.get("data")
        if not isinstance(data, dict):
            raise self._fail("gateway response has no data", reason="malformed", gateway_code=code)
        signature = body.get("signature")
        if signature is not None and not verify(self.checksum_key or "", data, signature):
            raise self._fail("gateway signature mismatch", reason="signature", gateway_code=code)
        return data

    async def create_payment_link(
        self,
        order_code: int,
        amount: int,
        description: str,
        items: Iterable[Mapping[str, Any]] | None = None,
    ) -> dict:
        """Request a hosted checkout link for ``amount``.

        Returns the gateway ``data`` payload, which carries ``paymentLinkId``,
        ``checkoutUrl`` and ``qrCode``.
        """

        payload: dict[str, Any] = {
            "orderCode": order_code,
            "amount": amount,
            "description": description[:MAX_DESCRIPTION],
            "cancelUrl": self.cancel_url,
            "returnUrl": self.return_url,
        }
        lines = [
            {"name": item["name"], "quantity": item["quantity"], "price": item["price"]}
            for item in items or []
        ]
        if lines:
            payload["items"] = lines
        payload["signature"] = sign_payment_request(self.checksum_key or "", payload)

        data = await self._request("POST", PAYMENT_REQUESTS, payload)
        if not data.get("paymentLinkId") or not data.get("checkoutUrl"):
            raise self._fail("gateway response missing checkout link", reason="malformed")
        return data

    async def get_payment(self, ref: int | str) -> dict:
        """Return payment information for an ``orderCode`` or ``paymentLinkId``."""

        data = await self._request("GET", f"{PAYMENT_REQUESTS}/{ref}")
        if not data.get("status"):
            raise self._fail("gateway response missing status", reason="malformed")
        return data

    async def cancel_payment_link(self, ref: int | str, reason: str | None = None) -> dict:
        return await self._request(
            "PUT", f"{PAYMENT_REQUESTS}/{ref}", {"cancellationReason": reason}
        )

    def verify_webhook(self, body: Mapping[str, Any]) -> dict:
        """Check a webhook body's data signature and return its ``data``."""

        data = body.get("data")
        if not isinstance(data, dict):
            raise self._fail("webhook has no data", reason="malformed")
        if not verify(self.checksum_key or "", data, body.get("signature")):
            raise self._fail("webhook signature mismatch", reason="signature")
        return data

    async def aclose(self) -> None:
        await self._http.aclose()
