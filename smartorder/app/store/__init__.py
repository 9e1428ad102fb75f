"""Document store backends."""

from .base import (
    CATEGORIES,
    MENU,
    ORDERS,
    PAYMENTS,
    TABLES,
    ConcurrentModification,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    Subscription,
)
from .memory import InMemoryDocumentStore
from .sql import SqlDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "Subscription",
    "DocumentMissing",
    "DocumentExists",
    "ConcurrentModification",
    "TABLES",
    "ORDERS",
    "MENU",
    "CATEGORIES",
    "PAYMENTS",
]
