"""
Error taxonomy for the learning path engine.

- InvalidInput: rejected request data (quality score out of range, bad context)
- NotFound: missing progress record, subject or lesson
- GraphInconsistency: cycle or dangling prerequisite in subject content
- StorageUnavailable: the store could not complete a read or write
"""
from __future__ import annotations


class LearnPathError(Exception):
    """Base class for all engine errors."""

    code = "learnpath_error"

    def __init__(self, message: str, **details: object):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(LearnPathError):
    """Raised when caller-supplied data is out of range or malformed."""

    code = "invalid_input"


class NotFound(LearnPathError):
    """Raised when a referenced record does not exist."""

    code = "not_found"


class GraphInconsistency(LearnPathError):
    """Raised when subject content cannot be ordered."""

    code = "graph_inconsistency"


class StorageUnavailable(LearnPathError):
    """Raised when the backing store fails."""

    code = "storage_unavailable"
