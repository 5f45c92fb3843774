"""
SQLite storage for shared room documents.

This module provides a `DocumentStore` backed by SQLite. Documents are stored
as JSON with a version column; the compare-and-swap is a conditional
UPDATE that only matches the version the writer read.
"""

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional

from konchina.errors import VersionConflictError
from konchina.sync.store import DocumentStore, Snapshot

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    doc_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    data TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
"""


class SQLiteDocumentStore(DocumentStore):
    """
    Store and retrieve room documents from SQLite.

    Several stores (one per client process) can point at the same database
    file; SQLite's own locking serializes the conditional updates, and the
    version check rejects writes based on stale reads. A write notifies the
    subscribers of the store that made it straight away; writes made through
    other connections reach this store's subscribers when `poll()` is called.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the SQLite document store.

        Args:
            db_path: Optional path to the database file. If None, an in-memory
                database is used.
        """
        super().__init__()
        self.db_path = db_path
        self.conn = sqlite3.connect(
            db_path if db_path else ":memory:", check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._seen: Dict[str, int] = {}
        self.initialize_database()

    def initialize_database(self):
        """
        Initialize the database schema if it does not exist yet.
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.executescript(SCHEMA_SQL)
            self.conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        super().close()
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def get(self, doc_id: str) -> Optional[Snapshot]:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT version, data FROM documents WHERE doc_id = ?", (doc_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return Snapshot(doc_id, row["version"], json.loads(row["data"]))

    def _write(
        self, doc_id: str, expected_version: int, data: Dict[str, Any]
    ) -> Snapshot:
        payload = json.dumps(data)
        now = time.time()

        with self._lock:
            cursor = self.conn.cursor()
            if expected_version == 0:
                try:
                    cursor.execute(
                        """
                        INSERT INTO documents (
                            doc_id, version, data, created_at, updated_at
                        ) VALUES (?, 1, ?, ?, ?)
                        """,
                        (doc_id, payload, now, now),
                    )
                except sqlite3.IntegrityError:
                    self.conn.rollback()
                    raise VersionConflictError(
                        doc_id, expected_version, self._version_of(doc_id)
                    ) from None
            else:
                cursor.execute(
                    """
                    UPDATE documents
                    SET version = version + 1, data = ?, updated_at = ?
                    WHERE doc_id = ? AND version = ?
                    """,
                    (payload, now, doc_id, expected_version),
                )
                if cursor.rowcount != 1:
                    self.conn.rollback()
                    raise VersionConflictError(
                        doc_id, expected_version, self._version_of(doc_id)
                    )
            self.conn.commit()

        return Snapshot(doc_id, expected_version + 1, data)

    def subscribe(self, doc_id, callback):
        with self._lock:
            if doc_id not in self._seen:
                self._seen[doc_id] = self._version_of(doc_id)
        return super().subscribe(doc_id, callback)

    def _notify(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._seen[snapshot.doc_id] = max(
                self._seen.get(snapshot.doc_id, 0), snapshot.version
            )
        super()._notify(snapshot)

    def poll(self) -> int:
        """
        Deliver writes made through other connections to this store's subscribers.

        Each subscribed document whose stored version is newer than the last
        one delivered is read and passed to its subscribers.

        Returns:
            Number of documents that had a newer version
        """
        with self._subscriber_lock:
            doc_ids = [
                doc_id for doc_id, callbacks in self._subscribers.items() if callbacks
            ]

        changed = 0
        for doc_id in doc_ids:
            snapshot = self.get(doc_id)
            if snapshot is None:
                continue
            with self._lock:
                if snapshot.version <= self._seen.get(doc_id, 0):
                    continue
            logger.debug("Polled %s at version %d", doc_id, snapshot.version)
            self._notify(snapshot)
            changed += 1
        return changed

    def _version_of(self, doc_id: str) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT version FROM documents WHERE doc_id = ?", (doc_id,))
        row = cursor.fetchone()
        return row["version"] if row else 0

    def list_documents(self, limit: int = 1000) -> List[Dict[str, Any]]:
        """
        List stored documents, most recently updated first.

        Returns:
            A list of dictionaries with doc_id, version and updated_at
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT doc_id, version, updated_at FROM documents
                ORDER BY updated_at DESC LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [dict(row) for row in rows]

    def delete(self, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was removed
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM documents WHERE doc_id = ?", (doc_id,))
            self.conn.commit()
            return cursor.rowcount > 0
