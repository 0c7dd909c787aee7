"""Real-time document stores."""
from rollcall.store.base import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
    Index,
    Query,
    Subscription,
    array_union,
    server_timestamp,
)
from rollcall.store.memory import MemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentSnapshot",
    "DocumentStore",
    "FieldFilter",
    "Index",
    "Query",
    "Subscription",
    "array_union",
    "server_timestamp",
    "MemoryDocumentStore",
]
