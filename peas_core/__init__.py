"""peas - flat-file tickets and knowledge notes.

Every record is a markdown file with a frontmatter header. This package
provides the storage engine and a command line front end.
Import from here for the public API.
"""

from peas_core.exceptions import (
    PeasError,
    NotFoundError,
    ConflictError,
    ValidationError,
    CycleError,
    OrphanError,
    SelfRefError,
    ParseError,
    StoreIOError,
    ExhaustedError,
    LockError,
    ConfigError,
    NotInitializedError,
    NothingToUndoError,
)
from peas_core.constants import (
    VALID_TYPES,
    VALID_STATUSES,
    VALID_PRIORITIES,
    MAX_ID_RETRIES,
    LOCK_TIMEOUT,
    BASE36_CHARS,
)
from peas_core.utils import (
    get_iso_timestamp,
    atomic_write_text,
    file_lock,
)
from peas_core.models import FrontmatterFormat, Ticket, Note
from peas_core.frontmatter import decode, encode, detect_format
from peas_core.config import PeasConfig, load_config, save_config, find_root
from peas_core.log import setup_logging
from peas_core.ids import generate_random_id, next_id, validate_id, SequentialCounter
from peas_core.dependencies import (
    validate_parent,
    validate_blocking,
    detect_cycle,
    get_children,
    get_descendants,
    get_blockers,
    is_blocked,
    has_open_children,
)
from peas_core.search import ListFilter, parse_query
from peas_core.undo import UndoStack
from peas_core.assets import AssetPaths
from peas_core.repository import ListResult, TicketRepository
from peas_core.notes import NoteRepository
from peas_core.watcher import InotifyWatcher, PollingWatcher, open_watcher
from peas_core.store import Store, init_store, open_store
from peas_core.reorganization import (
    rename_ticket,
    reparent,
    add_blocking,
    remove_blocking,
    migrate_format,
    migrate_all,
)
from peas_core.doctor import run_checks, fix_counter
from peas_core.cli import app, main

__all__ = [
    # Exceptions
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
    # Constants
    "VALID_TYPES",
    "VALID_STATUSES",
    "VALID_PRIORITIES",
    "MAX_ID_RETRIES",
    "LOCK_TIMEOUT",
    "BASE36_CHARS",
    # Utils
    "get_iso_timestamp",
    "atomic_write_text",
    "file_lock",
    # Records
    "FrontmatterFormat",
    "Ticket",
    "Note",
    "decode",
    "encode",
    "detect_format",
    # Config and logging
    "PeasConfig",
    "load_config",
    "save_config",
    "find_root",
    "setup_logging",
    # IDs
    "generate_random_id",
    "next_id",
    "validate_id",
    "SequentialCounter",
    # Dependencies
    "validate_parent",
    "validate_blocking",
    "detect_cycle",
    "get_children",
    "get_descendants",
    "get_blockers",
    "is_blocked",
    "has_open_children",
    # Storage
    "ListFilter",
    "parse_query",
    "UndoStack",
    "AssetPaths",
    "ListResult",
    "TicketRepository",
    "NoteRepository",
    "InotifyWatcher",
    "PollingWatcher",
    "open_watcher",
    "Store",
    "init_store",
    "open_store",
    # Reorganization
    "rename_ticket",
    "reparent",
    "add_blocking",
    "remove_blocking",
    "migrate_format",
    "migrate_all",
    # Doctor
    "run_checks",
    "fix_counter",
    # CLI
    "app",
    "main",
]
