import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

HEADER = "X-Request-ID"
# Ids echoed from clients end up in logs and headers; keep them short and plain.
_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

# Context variable used by log filter to inject request id
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def resolve_request_id(value: str | None) -> str:
    """Return the client's id when it is well formed, else a fresh uuid4."""
    if value and _VALID_ID.match(value):
        return value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag every request, its logs and its response with one request id."""

    async def dispatch(self, request: Request, call_next):
        req_id = resolve_request_id(request.headers.get(HEADER))
        token = request_id_ctx.set(req_id)
        request.state.request_id = req_id
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[HEADER] = req_id
        return response
