"""
Document store contract for shared room state.

Two clients share one room document. The store offers point reads, a
versioned compare-and-swap write and change subscriptions. Every committed
write bumps the document's version; a write made against an older version is
refused with `VersionConflictError`, which is what lets the session layer
build optimistic read-modify-write transactions on top.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import copy
import logging
import threading

from konchina.errors import VersionConflictError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[["Snapshot"], None]


@dataclass(frozen=True)
class Snapshot:
    """
    A committed version of a document.

    Attributes:
        doc_id: Identifier of the document
        version: Version number, starting at 1 on creation
        data: The full document body
    """

    doc_id: str
    version: int
    data: Dict[str, Any]


class DocumentStore(ABC):
    """
    Abstract base class for shared document stores.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[SnapshotCallback]] = defaultdict(list)
        self._subscriber_lock = threading.RLock()

    @abstractmethod
    def get(self, doc_id: str) -> Optional[Snapshot]:
        """
        Read the latest committed version of a document.

        Returns:
            The snapshot, or None if the document does not exist
        """

    @abstractmethod
    def _write(
        self, doc_id: str, expected_version: int, data: Dict[str, Any]
    ) -> Snapshot:
        """Store `data` if the document is still at `expected_version`."""

    def compare_and_swap(
        self, doc_id: str, expected_version: int, data: Dict[str, Any]
    ) -> Snapshot:
        """
        Write a document only if nobody else wrote it since it was read.

        Args:
            doc_id: Identifier of the document
            expected_version: Version the caller read; 0 to create the document
            data: The new full document body

        Returns:
            The committed snapshot

        Raises:
            VersionConflictError: If the stored version is not `expected_version`
        """
        snapshot = self._write(doc_id, expected_version, copy.deepcopy(data))
        logger.debug("Committed %s at version %d", doc_id, snapshot.version)
        self._notify(snapshot)
        return snapshot

    def subscribe(self, doc_id: str, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Subscribe to committed writes of a document.

        The callback gets the current snapshot straight away when the document
        exists, then every later committed snapshot. Each call receives its
        own deep copy of the document.

        Returns:
            Unsubscribe function
        """
        with self._subscriber_lock:
            self._subscribers[doc_id].append(callback)

        current = self.get(doc_id)
        if current is not None:
            self._deliver(callback, current)

        def unsubscribe():
            with self._subscriber_lock:
                if callback in self._subscribers[doc_id]:
                    self._subscribers[doc_id].remove(callback)

        return unsubscribe

    def _notify(self, snapshot: Snapshot) -> None:
        with self._subscriber_lock:
            callbacks = list(self._subscribers.get(snapshot.doc_id, []))
        for callback in callbacks:
            self._deliver(callback, snapshot)

    @staticmethod
    def _deliver(callback: SnapshotCallback, snapshot: Snapshot) -> None:
        try:
            callback(
                Snapshot(snapshot.doc_id, snapshot.version, copy.deepcopy(snapshot.data))
            )
        except Exception as e:
            logger.error(
                f"Error in subscriber for {snapshot.doc_id}: {e}", exc_info=True
            )

    def poll(self) -> int:
        """
        Deliver writes made outside this store to its subscribers.

        A store that sees every write as it is made has nothing to deliver.

        Returns:
            Number of documents that had a newer version
        """
        return 0

    def close(self) -> None:
        """Release resources held by the store."""
        with self._subscriber_lock:
            self._subscribers.clear()


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe document store kept in process memory.
    """

    def __init__(self):
        super().__init__()
        self._documents: Dict[str, Snapshot] = {}
        self._lock = threading.RLock()

    def get(self, doc_id: str) -> Optional[Snapshot]:
        with self._lock:
            snapshot = self._documents.get(doc_id)
            if snapshot is None:
                return None
            return Snapshot(doc_id, snapshot.version, copy.deepcopy(snapshot.data))

    def _write(
        self, doc_id: str, expected_version: int, data: Dict[str, Any]
    ) -> Snapshot:
        with self._lock:
            current = self._documents.get(doc_id)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflictError(doc_id, expected_version, actual)
            snapshot = Snapshot(doc_id, actual + 1, data)
            self._documents[doc_id] = snapshot
            return snapshot
