"""
Synchronization layer for shared Konchina rooms.

This package provides the document store contract, an in-memory and a SQLite
store, and the transactional room session used by each client.
"""

from konchina.sync.store import (
    DocumentStore as DocumentStore,
    InMemoryDocumentStore as InMemoryDocumentStore,
    Snapshot as Snapshot,
)
from konchina.sync.sqlite_store import SQLiteDocumentStore as SQLiteDocumentStore
from konchina.sync.session import (
    RoomSession as RoomSession,
    run_transaction as run_transaction,
    normalize_room_id as normalize_room_id,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "Snapshot",
    "SQLiteDocumentStore",
    "RoomSession",
    "run_transaction",
    "normalize_room_id",
]
