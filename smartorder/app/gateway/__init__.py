"""External payment gateway clients."""

from .payos import SUCCESS_CODE, PayOSClient

__all__ = ["PayOSClient", "SUCCESS_CODE"]
