"""Server-Sent Events stream of the table map for floor screens.

Each event emits ``event: table_map`` with a monotonically increasing
``id`` and the full list of tables as data. The first event is always the
current snapshot, so a client reconnecting with ``Last-Event-ID`` simply
continues the numbering and receives the whole map again.
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import StreamingResponse

from .deps import get_tables
from .routes_metrics import sse_clients_gauge

KEEPALIVE_INTERVAL = 15
QUEUE_SIZE = 32

router = APIRouter()
logger = logging.getLogger("api")


@router.get(
    "/api/tables/map/stream",
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def stream_table_map(
    request: Request,
    area: str | None = None,
    last_event_id: str | None = Header(None),
) -> StreamingResponse:
    """Stream table state changes via SSE."""

    tables = get_tables(request)
    seq = int(last_event_id) + 1 if last_event_id and last_event_id.isdigit() else 1
    queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=QUEUE_SIZE)

    def on_change(rows) -> None:
        nonlocal seq
        data = json.dumps({"tables": [t.to_doc() for t in rows]})
        try:
            queue.put_nowait(f"event: table_map\nid: {seq}\ndata: {data}\n\n")
            seq += 1
        except asyncio.QueueFull:
            # Slow client; end the stream so it reconnects with a fresh snapshot.
            while not queue.empty():
                queue.get_nowait()
            queue.put_nowait(None)
            if subscription is not None:
                subscription.unsubscribe()

    subscription = None
    subscription = await tables.subscribe_tables(on_change, area)
    sse_clients_gauge.inc()

    async def event_gen():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    item = await asyncio.wait_for(queue.get(), KEEPALIVE_INTERVAL)
                except asyncio.TimeoutError:
                    if not subscription.active:
                        break
                    yield ":keepalive\n\n"
                    continue
                if item is None:
                    break
                yield item
        finally:
            subscription.unsubscribe()
            sse_clients_gauge.dec()

    return StreamingResponse(event_gen(), media_type="text/event-stream")
