"""Custom exceptions for peas.

Every failure the store can produce is a subclass of PeasError so callers
can catch one base class. Each error carries a category so front ends can
tell transient problems (reload and retry) from structural ones (different
input needed) and environmental ones (operator attention needed).
"""

from typing import Optional

__all__ = [
    "PeasError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "CycleError",
    "OrphanError",
    "SelfRefError",
    "ParseError",
    "StoreIOError",
    "ExhaustedError",
    "LockError",
    "ConfigError",
    "NotInitializedError",
    "NothingToUndoError",
]

TRANSIENT = "transient"
STRUCTURAL = "structural"
ENVIRONMENTAL = "environmental"


class PeasError(Exception):
    """Base class for all store errors."""

    category = STRUCTURAL

    @property
    def retryable(self) -> bool:
        return self.category == TRANSIENT


class NotFoundError(PeasError):
    """Raised when a record id or note key does not exist."""

    def __init__(self, record_id: str, kind: str = "Ticket"):
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class ConflictError(PeasError):
    """Raised when a write was prepared against a stale copy of a record.

    Nothing on disk is touched. Reload the record and retry.
    """

    category = TRANSIENT

    def __init__(self, record_id: str, expected: Optional[str] = None, actual: Optional[str] = None):
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        message = f"{record_id} was modified by another writer"
        if expected is not None or actual is not None:
            message += f" (loaded at {expected}, now {actual})"
        super().__init__(message)


class ValidationError(PeasError):
    """Raised when a record or relationship change is not acceptable."""

    pass


class CycleError(ValidationError):
    """Raised when a parent or blocking edge would close a cycle."""

    pass


class OrphanError(ValidationError):
    """Raised when a relationship references a missing record, or a
    delete/archive would leave children pointing at nothing."""

    pass


class SelfRefError(ValidationError):
    """Raised when a record references itself as parent or blocker."""

    pass


class ParseError(PeasError):
    """Raised when a record file cannot be decoded."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class StoreIOError(PeasError):
    """Raised when the filesystem fails underneath the store."""

    category = ENVIRONMENTAL


class ExhaustedError(PeasError):
    """Raised when no unused identifier could be produced."""

    pass


class LockError(PeasError):
    """Raised when unable to acquire file lock."""

    category = ENVIRONMENTAL


class ConfigError(PeasError):
    """Raised when the store configuration is unreadable or invalid."""

    category = ENVIRONMENTAL


class NotInitializedError(ConfigError):
    """Raised when no store directory can be found."""

    def __init__(self, start: Optional[str] = None):
        message = "Project not initialized. Run 'peas init' first."
        if start:
            message = f"No .peas directory found above {start}. Run 'peas init' first."
        super().__init__(message)


class NothingToUndoError(PeasError):
    """Raised when the undo stack is empty."""

    def __init__(self):
        super().__init__("Nothing to undo")
