"""Undo stack for destructive and mutating store operations.

Every committed repository write pushes one UndoEntry describing the files it
touched: for each file, the exact text it had before (None if it did not
exist) and the ``updated`` stamp it has afterwards (None if the operation
removed it). Undoing an entry first checks that every file is still in that
post-operation state, then writes the old texts back.

The stack lives in memory by default. Given a path, it is also kept as JSON
on disk so separate processes (successive CLI invocations) share it.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from peas_core.constants import MAX_UNDO_LEVELS
from peas_core.exceptions import ConflictError, NothingToUndoError, PeasError, StoreIOError
from peas_core.utils import atomic_write_text, get_iso_timestamp

if TYPE_CHECKING:
    from peas_core.repository import RecordRepository

__all__ = [
    "FileChange",
    "UndoEntry",
    "UndoStack",
    "CREATE",
    "UPDATE",
    "DELETE",
    "ARCHIVE",
    "UNARCHIVE",
    "RENAME",
]

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
ARCHIVE = "archive"
UNARCHIVE = "unarchive"
RENAME = "rename"

_PAST_TENSE = {
    CREATE: "created",
    UPDATE: "updated",
    DELETE: "deleted",
    ARCHIVE: "archived",
    UNARCHIVE: "unarchived",
    RENAME: "renamed",
}


@dataclass
class FileChange:
    """One file touched by an operation, relative to the store root."""

    path: str
    before: Optional[str] = None
    after: Optional[str] = None


@dataclass
class UndoEntry:
    op: str
    target: str
    changes: List[FileChange] = field(default_factory=list)
    # directories moved by the operation, as (source, destination)
    moves: List[Tuple[str, str]] = field(default_factory=list)
    timestamp: str = field(default_factory=get_iso_timestamp)

    def describe(self) -> str:
        return f"{_PAST_TENSE.get(self.op, self.op)} {self.target}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["moves"] = [list(move) for move in self.moves]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UndoEntry":
        return cls(
            op=data["op"],
            target=data["target"],
            changes=[FileChange(**change) for change in data.get("changes", [])],
            moves=[(src, dst) for src, dst in data.get("moves", [])],
            timestamp=data.get("timestamp", ""),
        )


class UndoStack:
    """Bounded LIFO of UndoEntry; the oldest entry is dropped when full."""

    def __init__(self, max_depth: int = MAX_UNDO_LEVELS, path: Optional[Path] = None):
        if max_depth < 1:
            raise ValueError("max_depth must be positive")
        self.max_depth = max_depth
        self.path = Path(path) if path else None
        self._entries: List[UndoEntry] = []
        self._repos: List["RecordRepository"] = []
        self._load()

    # -- persistence --------------------------------------------------------

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._entries = [UndoEntry.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            # A damaged undo file only costs history
            logger.warning("discarding unreadable undo stack %s: %s", self.path, e)
            self._entries = []
        self._entries = self._entries[-self.max_depth:]

    def _save(self) -> None:
        if self.path is None:
            return
        payload = json.dumps([entry.to_dict() for entry in self._entries], indent=1)
        try:
            atomic_write_text(self.path, payload + "\n")
        except OSError as e:
            raise StoreIOError(f"Cannot write undo stack {self.path}: {e}") from e

    # -- stack --------------------------------------------------------------

    def attach(self, *repos: "RecordRepository") -> "UndoStack":
        """Register repositories whose writes this stack records and reverts."""
        for repo in repos:
            if repo not in self._repos:
                self._repos.append(repo)
            repo.undo_stack = self
        return self

    def record(self, entry: UndoEntry) -> None:
        self._load()
        self._entries.append(entry)
        if len(self._entries) > self.max_depth:
            dropped = self._entries.pop(0)
            logger.debug("undo stack full, dropped %s", dropped.describe())
        self._save()

    def peek(self) -> Optional[UndoEntry]:
        self._load()
        return self._entries[-1] if self._entries else None

    def descriptions(self) -> List[str]:
        """Entry descriptions, newest first."""
        self._load()
        return [entry.describe() for entry in reversed(self._entries)]

    def clear(self) -> None:
        self._entries = []
        self._save()

    def __len__(self) -> int:
        self._load()
        return len(self._entries)

    def undo(self) -> str:
        """Revert the newest entry.

        Returns:
            A description of what was undone

        Raises:
            NothingToUndoError: If the stack is empty
            ConflictError: If a touched file changed since the operation;
                the entry stays on the stack
            StoreIOError: If restoring a file fails
        """
        self._load()
        if not self._entries:
            raise NothingToUndoError()
        if not self._repos:
            raise PeasError("Undo stack is not attached to a repository")

        entry = self._entries[-1]
        repo = self._repos[0]

        for change in entry.changes:
            actual = repo.current_stamp(change.path)
            if actual != change.after:
                raise ConflictError(change.path, expected=change.after, actual=actual)

        for change in reversed(entry.changes):
            repo.restore_file(change.path, change.before)
        for source, destination in reversed(entry.moves):
            repo.move_back(destination, source)

        self._entries.pop()
        self._save()
        for attached in self._repos:
            attached.invalidate()

        description = entry.describe()
        logger.info("undid: %s", description)
        return description
