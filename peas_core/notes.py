"""Knowledge notes at ``<root>/memory/<key>.md``.

Notes use the same engine as tickets (atomic writes, conflict detection,
undo) but have no relationships and no archive.
"""

from typing import List, Optional

from peas_core.constants import MEMORY_DIR
from peas_core.models import Note, check_note_key
from peas_core.repository import RecordRepository
from peas_core.search import parse_query

__all__ = ["NoteRepository"]


class NoteRepository(RecordRepository):
    kind = Note
    subdir = MEMORY_DIR
    archive_subdir = None

    def _check_key(self, key: str) -> None:
        check_note_key(key)

    def delete(self, key: str) -> None:
        """Remove a note.

        Raises:
            NotFoundError: If the note does not exist
        """
        self._delete_file(self._resolve_key(key))

    def list(self, tag: Optional[str] = None, query: Optional[str] = None) -> List[Note]:
        """Notes, most recently updated first.

        Args:
            tag: Only notes carrying this tag
            query: Search query (see peas_core.search)
        """
        parsed = parse_query(query) if query else None
        notes = [entry.record.copy() for entry in self.cache.entries().values()]
        if tag is not None:
            notes = [n for n in notes if tag in n.tags]
        if parsed is not None:
            notes = [n for n in notes if parsed.matches(n)]
        return sorted(notes, key=lambda n: (n.updated, n.key), reverse=True)

    def search(self, text: str) -> List[Note]:
        return self.list(query=text)

    def errors(self):
        """Unparseable note files, keyed by note key."""
        return {key: entry.error for key, entry in self.cache.errors().items()}
