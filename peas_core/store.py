"""Store directory layout and the Store facade.

    <root>/                  (normally <project>/.peas)
      config.toml
      <id>.md                tickets
      archive/<id>.md        archived tickets
      memory/<key>.md        notes
      assets/<id>/<file>     ticket assets
      .id  .id.lock          sequential counter and its lock
      .undo                  persisted undo stack (when enabled)
"""

import logging
from pathlib import Path
from typing import Optional, Union

from peas_core.config import PeasConfig, find_root, load_config, save_config
from peas_core.constants import (
    ARCHIVE_DIR,
    ASSETS_DIR,
    CONFIG_FILENAMES,
    DATA_DIR,
    DEFAULT_FRONTMATTER,
    DEFAULT_ID_LENGTH,
    DEFAULT_PREFIX,
    MEMORY_DIR,
    UNDO_FILE,
)
from peas_core.exceptions import ConfigError, NotInitializedError, StoreIOError
from peas_core.notes import NoteRepository
from peas_core.repository import TicketRepository
from peas_core.undo import UndoStack
from peas_core.watcher import ChangeWatcher, open_watcher

__all__ = [
    "Store",
    "init_store",
    "open_store",
]

logger = logging.getLogger(__name__)


class Store:
    """Tickets, notes and one shared undo stack over a single root."""

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[PeasConfig] = None,
        persistent_undo: bool = False,
    ):
        self.root = Path(root)
        self.config = config or load_config(self.root)
        undo_path = self.root / UNDO_FILE if persistent_undo else None
        self.undo = UndoStack(self.config.undo_depth, undo_path)
        self.tickets = TicketRepository(self.root, self.config, self.undo)
        self.notes = NoteRepository(self.root, self.config, self.undo)
        self.assets = self.tickets.assets

    def refresh(self) -> None:
        self.tickets.refresh()
        self.notes.refresh()

    def invalidate(self) -> None:
        self.tickets.invalidate()
        self.notes.invalidate()

    def watcher(self, interval: float = 1.0) -> ChangeWatcher:
        """Watch tickets and notes; inotify where available, polling otherwise."""
        return open_watcher([self.tickets, self.notes], interval)

    def __repr__(self) -> str:
        return f"Store({str(self.root)!r})"


def init_store(
    project_dir: Optional[Union[str, Path]] = None,
    prefix: str = DEFAULT_PREFIX,
    id_length: int = DEFAULT_ID_LENGTH,
    id_mode: str = "random",
    frontmatter: str = DEFAULT_FRONTMATTER,
    root: Optional[Union[str, Path]] = None,
) -> Store:
    """Create a new store.

    Args:
        project_dir: Directory that gets a .peas/ subdirectory (default: cwd)
        prefix: Id prefix
        id_length: Id suffix length
        id_mode: "random" or "sequential"
        frontmatter: Header format for new records
        root: Use this directory as the store root instead of project_dir/.peas

    Raises:
        ConfigError: If a store already exists there or the settings are invalid
        StoreIOError: If the directories cannot be created
    """
    store_root = Path(root) if root else Path(project_dir or Path.cwd()) / DATA_DIR
    for filename in CONFIG_FILENAMES:
        if (store_root / filename).exists():
            raise ConfigError(f"Store already initialized at {store_root}")

    config = PeasConfig(
        root=store_root,
        prefix=prefix,
        id_length=id_length,
        id_mode=id_mode,
        frontmatter=frontmatter,
    )
    try:
        for subdir in (ARCHIVE_DIR, MEMORY_DIR, ASSETS_DIR):
            (store_root / subdir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StoreIOError(f"Cannot create {store_root}: {e}") from e
    save_config(config)

    logger.info("initialized store at %s", store_root)
    return Store(store_root, config)


def open_store(
    root: Optional[Union[str, Path]] = None,
    start: Optional[Union[str, Path]] = None,
    persistent_undo: bool = False,
) -> Store:
    """Open an existing store.

    Args:
        root: Store root; found with ``find_root(start)`` when omitted
        start: Where the upward search begins (default: cwd)
        persistent_undo: Keep the undo stack in <root>/.undo

    Raises:
        NotInitializedError: If no store exists
        ConfigError: If its config file is invalid
    """
    store_root = Path(root) if root else find_root(start)
    if not store_root.is_dir():
        raise NotInitializedError(str(store_root))
    return Store(store_root, load_config(store_root), persistent_undo=persistent_undo)
