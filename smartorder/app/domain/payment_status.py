"""Payment lifecycle states and gateway status mapping."""

from __future__ import annotations

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    GATEWAY = "payos"
    CASH = "cash"


# PayOS reports a handful of intermediate states; collapse them onto ours.
GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "PENDING": PaymentStatus.PENDING,
    "PROCESSING": PaymentStatus.PENDING,
    "UNDERPAID": PaymentStatus.PENDING,
    "PAID": PaymentStatus.PAID,
    "CANCELLED": PaymentStatus.CANCELLED,
    "EXPIRED": PaymentStatus.CANCELLED,
    "FAILED": PaymentStatus.FAILED,
}


def map_gateway_status(raw: str | None) -> PaymentStatus | None:
    """Return our status for a gateway ``raw`` status, or ``None`` if unknown."""

    if not raw:
        return None
    return GATEWAY_STATUS_MAP.get(raw.upper())
