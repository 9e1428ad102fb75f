"""Observability helpers: JSON logs, error sink and SQL timing."""

from .errors import capture_exception, init_sentry
from .logging import JsonFormatter, configure_logging
from .queries import add_query_logger

__all__ = [
    "capture_exception",
    "init_sentry",
    "configure_logging",
    "JsonFormatter",
    "add_query_logger",
]
