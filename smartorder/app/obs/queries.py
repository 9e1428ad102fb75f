"""SQL timing for the document store engine."""

from __future__ import annotations

import hashlib
import logging
import os
import time

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..routes_metrics import db_query_seconds, slow_queries_total

SLOW_QUERY_MS = int(os.getenv("DB_SLOW_QUERY_MS", "200"))
MAX_SQL_CHARS = 200

logger = logging.getLogger("obs")


def _shorten(statement: str) -> str:
    sql = " ".join(statement.split())
    if len(sql) > MAX_SQL_CHARS:
        sql = sql[: MAX_SQL_CHARS - 3] + "..."
    return sql


def add_query_logger(engine: Engine, store: str) -> None:
    """Time every statement on ``engine`` and warn about slow ones.

    Durations feed ``db_query_seconds{store}``. Parameters are logged only
    as a short hash because documents may carry guest notes.
    """
    target = engine.sync_engine if hasattr(engine, "sync_engine") else engine
    histogram = db_query_seconds.labels(store=store)

    @event.listens_for(target, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        context._smartorder_started = time.perf_counter()

    @event.listens_for(target, "after_cursor_execute")
    def _stop(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
        elapsed = time.perf_counter() - context._smartorder_started
        histogram.observe(elapsed)
        if elapsed * 1000 <= SLOW_QUERY_MS:
            return
        slow_queries_total.labels(store=store).inc()
        logger.warning(
            "slow query %dms store=%s sql=%s params=%s",
            int(elapsed * 1000),
            store,
            _shorten(statement),
            hashlib.sha256(repr(parameters).encode()).hexdigest()[:8],
        )
