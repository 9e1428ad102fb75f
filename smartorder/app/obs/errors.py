"""Error reporting helpers."""

from __future__ import annotations

import logging
import os
from typing import Optional

import sentry_sdk

from ..middlewares.request_id import request_id_ctx

logger = logging.getLogger("obs")


def init_sentry(dsn: Optional[str] = None, env: Optional[str] = None) -> bool:
    """Initialize Sentry if a DSN is provided. Returns ``True`` when enabled.

    Request bodies are never attached; they can contain guest names and the
    gateway signature.
    """
    dsn = dsn or os.getenv("ERROR_DSN")
    if not dsn:
        logger.info("ERROR_DSN not set; error sink disabled")
        return False
    sentry_sdk.init(dsn=dsn, environment=env, send_default_pii=False, max_request_body_size="never")
    return True


def capture_exception(exc: Exception, **tags: str) -> None:
    """Forward ``exc`` to Sentry tagged with the request id, else log it."""
    if not sentry_sdk.get_client().is_active():
        logger.error("Unhandled exception", exc_info=exc)
        return
    with sentry_sdk.new_scope() as scope:
        req_id = request_id_ctx.get(None)
        if req_id:
            scope.set_tag("req_id", req_id)
        for key, value in tags.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc)
