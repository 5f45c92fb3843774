"""
Exceptions raised by the konchina engine and its synchronization layer.
"""


class KonchinaError(Exception):
    """Base class for all konchina errors."""


class RoomFullError(KonchinaError):
    """Exception raised when a third player tries to join a room."""


class RoomNotFoundError(KonchinaError):
    """Exception raised when a room document does not exist."""


class IllegalMoveError(KonchinaError):
    """Exception raised when a capture selection is not legal."""


class VersionConflictError(KonchinaError):
    """Exception raised when a compare-and-swap finds a newer document version."""

    def __init__(self, doc_id: str, expected: int, actual: int):
        super().__init__(
            f"Document {doc_id!r} is at version {actual}, expected {expected}"
        )
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class TransactionAbortedError(KonchinaError):
    """Exception raised when a transaction keeps losing the race and gives up."""


class InvariantViolation(KonchinaError):
    """Exception raised when the card arithmetic of a game becomes impossible."""
