"""Repository engine: records as files, with a cache, conflict checks and undo.

One record is one file. Every write goes through ``atomic_write_text`` (temp
file, fsync, rename), so a crash leaves either the old or the new file.
Concurrent writers are detected, not locked out: ``update`` re-reads the
record's ``updated`` stamp from disk right before writing and refuses with
ConflictError if it moved since the caller loaded the record.

The in-memory cache belongs to one repository instance. It is filled lazily,
dropped after every committed write, and can be dropped from outside
(``invalidate``) when another process is known to have written. Between
those points it may lag behind other processes.
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Type, Union

from peas_core.assets import AssetPaths
from peas_core.config import PeasConfig
from peas_core.constants import ARCHIVE_DIR, COUNTER_FILE, COUNTER_LOCK_FILE, RECORD_SUFFIX
from peas_core.dependencies import (
    get_blockers,
    get_children,
    get_descendants,
    validate_blocking,
    validate_parent,
)
from peas_core.exceptions import (
    ConflictError,
    NotFoundError,
    OrphanError,
    ParseError,
    StoreIOError,
    ValidationError,
)
from peas_core.frontmatter import FrontmatterFormat, decode, encode, split_document
from peas_core.ids import SequentialCounter, check_id_safety, next_id, normalize_id
from peas_core.models import Note, Ticket
from peas_core.search import ListFilter
from peas_core.undo import (
    ARCHIVE,
    CREATE,
    DELETE,
    RENAME,
    UNARCHIVE,
    UPDATE,
    FileChange,
    UndoEntry,
    UndoStack,
)
from peas_core.utils import (
    EPOCH,
    atomic_write_text,
    format_timestamp,
    next_timestamp,
    now_utc,
    parse_timestamp,
)

__all__ = [
    "CacheEntry",
    "CacheError",
    "RecordCache",
    "ListResult",
    "RecordRepository",
    "TicketRepository",
]

logger = logging.getLogger(__name__)

Record = Union[Ticket, Note]

# Stamp reported for a file whose header cannot be read
UNREADABLE_STAMP = "unreadable"


@dataclass
class CacheEntry:
    record: Any
    path: Path
    archived: bool = False


@dataclass
class CacheError:
    error: ParseError
    path: Path
    archived: bool = False


class ListResult(NamedTuple):
    records: List[Ticket]
    errors: Dict[str, ParseError]


class RecordCache:
    """Lazily built map of key -> CacheEntry plus derived indices.

    The cache is never patched, only dropped (``invalidate``) or rebuilt
    (``refresh``).
    """

    def __init__(self, loader: Callable[[], Tuple[Dict[str, CacheEntry], Dict[str, CacheError]]]):
        self._loader = loader
        self._entries: Optional[Dict[str, CacheEntry]] = None
        self._errors: Dict[str, CacheError] = {}
        self._children: Optional[Dict[str, List[str]]] = None

    @property
    def is_populated(self) -> bool:
        return self._entries is not None

    def invalidate(self) -> None:
        self._entries = None
        self._errors = {}
        self._children = None

    def refresh(self) -> None:
        entries, errors = self._loader()
        self._entries = entries
        self._errors = errors
        self._children = None

    def entries(self) -> Dict[str, CacheEntry]:
        if self._entries is None:
            self.refresh()
        return self._entries

    def errors(self) -> Dict[str, CacheError]:
        if self._entries is None:
            self.refresh()
        return self._errors

    def get(self, key: str) -> Optional[CacheEntry]:
        return self.entries().get(key)

    def children_index(self) -> Dict[str, List[str]]:
        """parent id -> child ids, derived from the entries."""
        if self._children is None:
            index: Dict[str, List[str]] = {}
            for key, entry in self.entries().items():
                parent = getattr(entry.record, "parent", None)
                if parent:
                    index.setdefault(parent, []).append(key)
            self._children = index
        return self._children


class RecordRepository:
    """File-per-record storage shared by tickets and notes.

    Subclasses set ``kind`` and the directories, and may hook key handling
    and relationship validation.
    """

    kind: Type[Record] = Ticket
    subdir: Optional[str] = None
    archive_subdir: Optional[str] = None

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[PeasConfig] = None,
        undo_stack: Optional[UndoStack] = None,
    ):
        self.root = Path(root)
        self.config = config or PeasConfig(root=self.root)
        self.directory = self.root / self.subdir if self.subdir else self.root
        self.archive_directory = self.root / self.archive_subdir if self.archive_subdir else None
        self.cache = RecordCache(self._load_all)
        self.undo_stack: Optional[UndoStack] = None
        if undo_stack is not None:
            undo_stack.attach(self)

    # -- keys and paths -----------------------------------------------------

    def _check_key(self, key: str) -> None:
        check_id_safety(key)

    def _resolve_key(self, key: str) -> str:
        return key.strip()

    def _assign_key(self, record: Record) -> None:
        raise ValidationError(f"{self.kind.KIND} key is required")

    def path_for(self, key: str, archived: bool = False) -> Path:
        self._check_key(key)
        if archived:
            if self.archive_directory is None:
                raise ValidationError(f"{self.kind.KIND}s cannot be archived")
            return self.archive_directory / f"{key}{RECORD_SUFFIX}"
        return self.directory / f"{key}{RECORD_SUFFIX}"

    def relpath(self, path: Path) -> str:
        return Path(path).relative_to(self.root).as_posix()

    def _locate(self, key: str) -> Tuple[Path, bool]:
        """Find a record's file on disk: (path, archived).

        Raises:
            NotFoundError: If neither the active nor the archived file exists
        """
        active = self.path_for(key)
        if active.exists():
            return active, False
        if self.archive_directory is not None:
            archived = self.path_for(key, archived=True)
            if archived.exists():
                return archived, True
        raise NotFoundError(key, self.kind.KIND)

    def _find_exact(self, key: str) -> Optional[Path]:
        try:
            path, _ = self._locate(key)
        except (NotFoundError, ValidationError):
            return None
        return path

    def find_path(self, key: str) -> Optional[Path]:
        """Path of the record's file, or None if it does not exist."""
        return self._find_exact(self._resolve_key(key))

    # -- file primitives ----------------------------------------------------

    def _read_text(self, path: Path) -> Optional[str]:
        try:
            with open(path, encoding="utf-8", newline="") as handle:
                return handle.read()
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise ParseError(f"Not valid UTF-8: {e}", path=self.relpath(path)) from e
        except OSError as e:
            raise StoreIOError(f"Cannot read {self.relpath(path)}: {e}") from e

    def _decode(self, text: str, path: Path) -> Record:
        return decode(text, kind=self.kind, path=self.relpath(path)).record

    def _read_path(self, path: Path) -> Record:
        text = self._read_text(path)
        if text is None:
            raise NotFoundError(path.name[: -len(RECORD_SUFFIX)], self.kind.KIND)
        return self._decode(text, path)

    def _write_record(self, record: Record, path: Path, exclusive: bool = False) -> str:
        record.format = record.format or self.config.frontmatter_format
        text = encode(record.format, record)
        try:
            atomic_write_text(path, text, exclusive=exclusive)
        except FileExistsError as e:
            raise ConflictError(record.key) from e
        except OSError as e:
            raise StoreIOError(f"Cannot write {self.relpath(path)}: {e}") from e
        return text

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreIOError(f"Cannot remove {self.relpath(path)}: {e}") from e

    def _move(self, source: Path, target: Path) -> None:
        if target.exists():
            raise StoreIOError(f"Cannot move {self.relpath(source)}: {self.relpath(target)} exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
        except OSError as e:
            raise StoreIOError(f"Cannot move {self.relpath(source)}: {e}") from e

    def _change(self, path: Path, before: Optional[str], after: Optional[Record]) -> FileChange:
        stamp = format_timestamp(after.updated) if after is not None else None
        return FileChange(self.relpath(path), before, stamp)

    def _commit(self, op: str, target: str, changes: Iterable[FileChange], moves=()) -> None:
        self.cache.invalidate()
        if self.undo_stack is not None:
            self.undo_stack.record(UndoEntry(op, target, list(changes), list(moves)))
        logger.info("%s %s %s", op, self.kind.KIND.lower(), target)

    @contextmanager
    def _recording(self, op: str, target: str) -> Iterator[Tuple[List[FileChange], List[Tuple[str, str]]]]:
        """Collect the changes of a multi-file operation and commit them.

        The body appends each FileChange (and directory move) right after it
        lands on disk. If the body fails partway, the cache is still dropped
        and the changes that did land are recorded as an incomplete entry,
        so one undo reverts them.
        """
        changes: List[FileChange] = []
        moves: List[Tuple[str, str]] = []
        try:
            yield changes, moves
        except BaseException:
            self.cache.invalidate()
            if changes or moves:
                logger.warning(
                    "%s %s failed after %d file change(s); recorded for undo",
                    op, target, len(changes) + len(moves),
                )
                self._commit(op, f"{target} (incomplete)", changes, moves)
            raise
        self._commit(op, target, changes, moves)

    # -- undo hooks ---------------------------------------------------------

    def current_stamp(self, relpath: str) -> Optional[str]:
        """The ``updated`` stamp of a file, or None if it does not exist."""
        text = self._read_text(self.root / relpath)
        if text is None:
            return None
        try:
            _, header, _ = split_document(text)
            value = header.get("updated")
            return format_timestamp(parse_timestamp(value) if value else EPOCH)
        except (ParseError, ValueError):
            return UNREADABLE_STAMP

    def restore_file(self, relpath: str, text: Optional[str]) -> None:
        """Put a file back to ``text``, or remove it when text is None."""
        path = self.root / relpath
        if text is None:
            self._remove(path)
            return
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise StoreIOError(f"Cannot restore {relpath}: {e}") from e

    def move_back(self, current: str, original: str) -> None:
        source, target = self.root / current, self.root / original
        if source.exists() and not target.exists():
            self._move(source, target)

    # -- cache --------------------------------------------------------------

    def invalidate(self) -> None:
        self.cache.invalidate()

    def refresh(self) -> None:
        self.cache.refresh()

    def _iter_files(self, directory: Path, deadline: float) -> Iterator[Path]:
        try:
            with os.scandir(directory) as listing:
                for item in listing:
                    if time.monotonic() > deadline:
                        raise StoreIOError(
                            f"Scanning {directory} took longer than {self.config.scan_timeout}s"
                        )
                    if item.name.startswith(".") or not item.name.endswith(RECORD_SUFFIX):
                        continue
                    if item.is_file():
                        yield Path(item.path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StoreIOError(f"Cannot list {directory}: {e}") from e

    def _load_all(self) -> Tuple[Dict[str, CacheEntry], Dict[str, CacheError]]:
        deadline = time.monotonic() + self.config.scan_timeout
        entries: Dict[str, CacheEntry] = {}
        errors: Dict[str, CacheError] = {}

        areas = [(self.directory, False)]
        if self.archive_directory is not None:
            areas.append((self.archive_directory, True))

        for directory, archived in areas:
            for path in self._iter_files(directory, deadline):
                key = path.name[: -len(RECORD_SUFFIX)]
                if key in entries or key in errors:
                    logger.warning("%s exists both active and archived; using active copy", key)
                    continue
                try:
                    record = self._read_path(path)
                except NotFoundError:
                    continue  # removed while we were scanning
                except ParseError as e:
                    logger.warning("cannot parse %s: %s", path, e)
                    errors[key] = CacheError(e, path, archived)
                    continue
                if record.key != key:
                    error = ParseError(
                        f"header {self.kind.KEY_FIELD} {record.key!r} does not match file name",
                        path=self.relpath(path),
                    )
                    errors[key] = CacheError(error, path, archived)
                    continue
                entries[key] = CacheEntry(record, path, archived)

        logger.debug("loaded %d %s record(s), %d error(s)", len(entries), self.kind.KIND, len(errors))
        return entries, errors

    # -- operations ---------------------------------------------------------

    def exists(self, key: str) -> bool:
        return self.find_path(key) is not None

    def read(self, key: str) -> Record:
        """Load one record.

        Raises:
            NotFoundError: If no such record exists
            ParseError: If its file is malformed
        """
        key = self._resolve_key(key)
        entry = self.cache.get(key)
        if entry is not None:
            return entry.record.copy()
        # not cached: possibly written by another process since the scan
        path, _ = self._locate(key)
        return self._read_path(path)

    def _validate_relationships(self, record: Record, current: Optional[Record]) -> None:
        pass

    def create(self, record: Record) -> str:
        """Validate and write a new record; returns its key.

        The record's key is assigned when empty; ``created`` and ``updated``
        are set to now. The file is published exclusively, so an existing
        record is never overwritten.

        Raises:
            ValidationError: On bad fields, an existing key, or a bad
                relationship
            ExhaustedError: If no id could be generated
            ConflictError: If another writer created the same key first
            StoreIOError: If the write fails
        """
        record.validate()
        self.cache.refresh()
        if not record.key:
            self._assign_key(record)
        else:
            self._check_key(record.key)
            if self._find_exact(record.key) is not None:
                raise ValidationError(f"{self.kind.KIND} {record.key} already exists")

        self._validate_relationships(record, None)

        record.created = record.updated = now_utc()
        path = self.path_for(record.key)
        self._write_record(record, path, exclusive=True)
        self._commit(CREATE, record.key, [self._change(path, None, record)])
        return record.key

    def update(self, record: Record) -> Record:
        """Write changes to an existing record.

        The record must carry the ``updated`` stamp it was loaded with. On
        success the same object is returned with its new stamp; if nothing
        but ``updated`` differs from disk, nothing is written.

        Raises:
            NotFoundError: If the record no longer exists
            ConflictError: If the file changed since the record was loaded
            ValidationError: On bad fields or relationships
            StoreIOError: If the write fails
        """
        key = record.key
        path, _ = self._locate(key)
        before = self._read_text(path)
        if before is None:
            raise NotFoundError(key, self.kind.KIND)
        current = self._decode(before, path)

        if current.updated != record.updated:
            raise ConflictError(
                key,
                expected=format_timestamp(record.updated),
                actual=format_timestamp(current.updated),
            )

        record.validate()
        record.format = current.format
        if record.semantic_fields() == current.semantic_fields():
            logger.debug("no changes to %s", key)
            return record

        self._validate_relationships(record, current)

        record.updated = next_timestamp(current.updated)
        self._write_record(record, path)
        self._commit(UPDATE, key, [self._change(path, before, record)])
        return record

    def migrate_format(self, key: str, fmt: FrontmatterFormat) -> bool:
        """Rewrite a record with a different header syntax.

        Returns:
            False if the record already used fmt
        """
        key = self._resolve_key(key)
        path, _ = self._locate(key)
        before = self._read_text(path)
        if before is None:
            raise NotFoundError(key, self.kind.KIND)
        record = self._decode(before, path)
        if record.format is fmt:
            return False

        record.format = fmt
        record.updated = next_timestamp(record.updated)
        self._write_record(record, path)
        self._commit(UPDATE, key, [self._change(path, before, record)])
        return True

    def _delete_file(self, key: str, op: str = DELETE) -> None:
        path, _ = self._locate(key)
        before = self._read_text(path)
        self._remove(path)
        self._commit(op, key, [FileChange(self.relpath(path), before, None)])


class TicketRepository(RecordRepository):
    """Tickets at ``<root>/<id>.md``, archived ones at ``<root>/archive/<id>.md``."""

    kind = Ticket
    subdir = None
    archive_subdir = ARCHIVE_DIR

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[PeasConfig] = None,
        undo_stack: Optional[UndoStack] = None,
    ):
        super().__init__(root, config, undo_stack)
        self.counter = SequentialCounter(
            self.root / COUNTER_FILE,
            self.root / COUNTER_LOCK_FILE,
            lock_timeout=self.config.lock_timeout,
        )
        self.assets = AssetPaths(self.root)

    def _resolve_key(self, key: str) -> str:
        key = key.strip()
        prefix = self.config.prefix
        if prefix and not key.startswith(prefix):
            if self.cache.get(key) is None and self._find_exact(key) is None:
                return normalize_id(key, prefix)
        return key

    def resolve_id(self, value: str) -> str:
        """Full id for a full id or a bare suffix."""
        return self._resolve_key(value)

    def _assign_key(self, record: Ticket) -> None:
        record.id = next_id(self.config, set(self.all_ids()), self.counter, record.title)

    def _validate_relationships(self, record: Ticket, current: Optional[Ticket]) -> None:
        parent_changed = current is None or record.parent != current.parent
        previous = set(current.blocking) if current is not None else set()
        added = [target for target in record.blocking if target not in previous]
        if not (parent_changed and record.parent) and not added:
            return

        if current is not None:
            self.cache.refresh()
        snapshot = self._snapshot_map()
        snapshot[record.id] = record

        if parent_changed:
            validate_parent(record.id, record.parent, snapshot)
        if added:
            validate_blocking(record.id, added, snapshot)

    def _snapshot_map(self) -> Dict[str, Ticket]:
        return {key: entry.record for key, entry in self.cache.entries().items()}

    # -- queries ------------------------------------------------------------

    def snapshot(self) -> Dict[str, Ticket]:
        """Copies of every parseable ticket, active and archived."""
        return {key: record.copy() for key, record in self._snapshot_map().items()}

    def all_ids(self) -> List[str]:
        """Every id in the store, including archived and unparseable files."""
        return sorted(set(self.cache.entries()) | set(self.cache.errors()))

    def children_of(self, record_id: str) -> List[Ticket]:
        record_id = self._resolve_key(record_id)
        entries = self.cache.entries()
        children = [entries[key].record.copy() for key in self.cache.children_index().get(record_id, [])]
        return sorted(children, key=lambda t: (t.created, t.id))

    def blocked_by_of(self, record_id: str) -> List[Ticket]:
        record_id = self._resolve_key(record_id)
        return [t.copy() for t in get_blockers(record_id, self._snapshot_map())]

    def list(self, filter: Optional[ListFilter] = None) -> ListResult:
        """Tickets matching filter (default: every active ticket).

        Unparseable files never abort the listing; they come back in
        ``errors`` keyed by id.

        Raises:
            StoreIOError: If the directory scan fails or times out
        """
        flt = filter if filter is not None else ListFilter()

        def wanted(archived: bool) -> bool:
            return flt.archived is None or flt.archived == archived

        entries = self.cache.entries()
        records = [e.record.copy() for e in entries.values() if wanted(e.archived)]
        errors = {key: e.error for key, e in self.cache.errors().items() if wanted(e.archived)}
        return ListResult(flt.apply(records), errors)

    # -- destructive --------------------------------------------------------

    def delete(self, record_id: str, cascade: bool = False, keep_assets: bool = False) -> List[str]:
        """Delete a ticket file and its asset directory.

        Other tickets that list it in ``blocking`` lose the reference. If
        children point at it, the delete is refused unless ``cascade`` is
        set, in which case their parent is cleared.

        Returns:
            Ids of the other tickets that were rewritten

        Raises:
            NotFoundError: If the ticket does not exist
            OrphanError: If it has children and cascade is not set
            StoreIOError: If a write fails (changes made so far are recorded
                for undo) or the asset directory cannot be removed (the
                delete itself is already committed)
        """
        key = self._resolve_key(record_id)
        path, _ = self._locate(key)
        self.cache.refresh()
        snapshot = self._snapshot_map()

        children = get_children(key, snapshot)
        if children and not cascade:
            raise OrphanError(
                f"{key} has children ({', '.join(c.id for c in children)}); "
                "delete them first or use cascade"
            )

        before = self._read_text(path)
        with self._recording(DELETE, key) as (changes, _):
            rewritten = self._rewrite_references(key, None, changes)
            self._remove(path)
            changes.append(FileChange(self.relpath(path), before, None))

        # after the commit: a failure here leaves only stray asset files
        if not keep_assets:
            self.assets.remove_assets(key)
        return rewritten

    def _rewrite_references(self, old_key: str, new_key: Optional[str], changes: List[FileChange]) -> List[str]:
        """Point every ``parent``/``blocking`` reference to old_key at new_key.

        With new_key None the references are dropped. Each rewritten file is
        appended to changes as soon as it is written.

        Returns:
            Ids of the rewritten tickets
        """
        rewritten: List[str] = []
        for other_id, entry in sorted(self.cache.entries().items()):
            other = entry.record
            if other_id == old_key or (other.parent != old_key and old_key not in other.blocking):
                continue
            other = other.copy()
            if other.parent == old_key:
                other.parent = new_key
            if new_key is None:
                other.blocking = [b for b in other.blocking if b != old_key]
            else:
                other.blocking = [new_key if b == old_key else b for b in other.blocking]
            other_before = self._read_text(entry.path)
            other.updated = next_timestamp(other.updated)
            self._write_record(other, entry.path)
            changes.append(self._change(entry.path, other_before, other))
            rewritten.append(other_id)
        return rewritten

    def archive(self, record_id: str, cascade: bool = False) -> List[str]:
        """Move a ticket (and with cascade, its descendants) into archive/.

        Returns:
            Ids that were archived

        Raises:
            NotFoundError: If the ticket does not exist
            ValidationError: If it is already archived
            OrphanError: If active children point at it and cascade is not set
            ParseError: If its file is malformed
        """
        key = self._resolve_key(record_id)
        _, archived = self._locate(key)
        if archived:
            raise ValidationError(f"{key} is already archived")

        self.cache.refresh()
        broken = self.cache.errors().get(key)
        if broken is not None:
            raise broken.error
        entries = self.cache.entries()
        snapshot = self._snapshot_map()
        active_children = [c for c in get_children(key, snapshot) if not entries[c.id].archived]
        if active_children and not cascade:
            raise OrphanError(
                f"{key} has active children ({', '.join(c.id for c in active_children)}); "
                "archive them first or use cascade"
            )

        targets = [key]
        if cascade:
            targets += [d.id for d in get_descendants(key, snapshot) if not entries[d.id].archived]

        for target in targets:
            if self.path_for(target, archived=True).exists():
                raise StoreIOError(f"{target} already exists in {ARCHIVE_DIR}/")

        with self._recording(ARCHIVE, key) as (changes, _):
            for target in targets:
                source = entries[target].path
                destination = self.path_for(target, archived=True)
                before = self._read_text(source)
                self._move(source, destination)
                changes.append(FileChange(self.relpath(source), before, None))
                changes.append(self._change(destination, None, entries[target].record))
        return targets

    def unarchive(self, record_id: str) -> None:
        """Move an archived ticket back to the active area.

        Raises:
            NotFoundError: If the ticket does not exist
            ValidationError: If it is not archived
        """
        key = self._resolve_key(record_id)
        source, archived = self._locate(key)
        if not archived:
            raise ValidationError(f"{key} is not archived")

        before = self._read_text(source)
        record = self._decode(before, source)
        destination = self.path_for(key)
        self._move(source, destination)
        self._commit(
            UNARCHIVE,
            key,
            [FileChange(self.relpath(source), before, None), self._change(destination, None, record)],
        )

    def rename(self, old_id: str, new_id: str) -> Tuple[List[str], bool]:
        """Give a ticket a new id, rewriting every reference to it.

        Every failure condition is checked before the first write. The file
        under the new id is published first (with the new header), then the
        tickets whose ``parent`` or ``blocking`` name the old id are
        rewritten, the old file is removed and the asset directory moved.
        One undo entry covers the whole operation. Callers check the id shape
        (see ``peas_core.reorganization.rename_ticket``).

        Returns:
            (ids of rewritten tickets, whether an asset directory moved)

        Raises:
            NotFoundError: If old_id does not exist
            ParseError: If its file is malformed
            ValidationError: If new_id is unsafe or already taken
            StoreIOError: If assets already exist under new_id, or a write
                fails (changes made so far are recorded for undo)
        """
        old_key = self._resolve_key(old_id)
        self._check_key(new_id)
        source, archived = self._locate(old_key)
        if self._find_exact(new_id) is not None:
            raise ValidationError(f"Ticket {new_id} already exists")

        old_assets = self.assets.asset_dir(old_key)
        new_assets = self.assets.asset_dir(new_id)
        if new_assets.exists():
            raise StoreIOError(f"Asset directory for {new_id} already exists")
        has_assets = old_assets.exists()

        self.cache.refresh()
        before = self._read_text(source)
        record = self._decode(before, source)
        record.id = new_id
        record.updated = next_timestamp(record.updated)
        destination = self.path_for(new_id, archived=archived)

        with self._recording(RENAME, f"{old_key} -> {new_id}") as (changes, moves):
            self._write_record(record, destination, exclusive=True)
            changes.append(self._change(destination, None, record))
            rewritten = self._rewrite_references(old_key, new_id, changes)
            self._remove(source)
            changes.append(FileChange(self.relpath(source), before, None))
            if has_assets and self.assets.move_assets(old_key, new_id):
                moves.append((self.relpath(old_assets), self.relpath(new_assets)))

        return rewritten, bool(moves)
