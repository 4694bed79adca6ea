"""Change watchers for long-lived processes.

A TUI or API server keeps repositories open for a long time; other processes
write to the same directories meanwhile. A watcher notices those writes and
drops the cache of every repository whose files moved.

Two backends share one interface (``poll`` and ``run``):

* InotifyWatcher uses kernel notifications through inotify_simple (Linux).
* PollingWatcher compares (inode, mtime_ns, size) of every record file between
  polls. It is the fallback where inotify is unavailable.

``open_watcher`` picks the first one that works.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from peas_core.constants import RECORD_SUFFIX
from peas_core.repository import RecordRepository

__all__ = ["ChangeWatcher", "InotifyWatcher", "PollingWatcher", "open_watcher"]

logger = logging.getLogger(__name__)

Signature = Tuple[int, int, int]
Repos = Union[RecordRepository, Sequence[RecordRepository]]


def _is_record_file(name: str) -> bool:
    return bool(name) and not name.startswith(".") and name.endswith(RECORD_SUFFIX)


class ChangeWatcher:
    """Base class: the watched directories and cache invalidation."""

    def __init__(self, repos: Repos, interval: float = 1.0):
        if isinstance(repos, RecordRepository):
            repos = [repos]
        self.repos: List[RecordRepository] = list(repos)
        self.interval = interval

    def directories(self) -> List[Tuple[Path, RecordRepository]]:
        """(directory, owning repository) for every area holding records."""
        areas = []
        for repo in self.repos:
            areas.append((repo.directory, repo))
            if repo.archive_directory is not None:
                areas.append((repo.archive_directory, repo))
        return areas

    def _invalidate(self, changed: Dict[RecordRepository, Set[str]]) -> List[str]:
        keys: Set[str] = set()
        for repo, names in changed.items():
            if not names:
                continue
            repo.invalidate()
            keys.update(name[: -len(RECORD_SUFFIX)] for name in names)
        if keys:
            logger.debug("detected external changes: %s", ", ".join(sorted(keys)))
        return sorted(keys)

    def poll(self) -> List[str]:
        raise NotImplementedError

    def _wait(self, stop_event: threading.Event) -> List[str]:
        stop_event.wait(self.interval)
        return self.poll()

    def run(
        self,
        stop_event: threading.Event,
        on_change: Optional[Callable[[List[str]], None]] = None,
    ) -> None:
        """Watch until stop_event is set, calling on_change with changed keys."""
        logger.info("%s watching %s", type(self).__name__, ", ".join(str(d) for d, _ in self.directories()))
        keys = self.poll()
        while True:
            if keys and on_change is not None:
                on_change(keys)
            if stop_event.is_set():
                break
            keys = self._wait(stop_event)
        self.close()

    def close(self) -> None:
        pass


class PollingWatcher(ChangeWatcher):
    def __init__(self, repos: Repos, interval: float = 1.0):
        super().__init__(repos, interval)
        self._seen: Dict[Path, Signature] = self.snapshot()

    def snapshot(self) -> Dict[Path, Signature]:
        """(inode, mtime_ns, size) for every record file right now."""
        state: Dict[Path, Signature] = {}
        for directory, _ in self.directories():
            try:
                listing = list(os.scandir(directory))
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("cannot scan %s: %s", directory, e)
                continue
            for item in listing:
                if not _is_record_file(item.name):
                    continue
                try:
                    stat = item.stat()
                except FileNotFoundError:
                    continue
                state[Path(item.path)] = (stat.st_ino, stat.st_mtime_ns, stat.st_size)
        return state

    def poll(self) -> List[str]:
        """Compare with the previous poll; invalidate caches on any change.

        Returns:
            Keys of records whose files appeared, disappeared or changed
        """
        current = self.snapshot()
        owners = {directory: repo for directory, repo in self.directories()}
        changed: Dict[RecordRepository, Set[str]] = {}
        for path in set(current) | set(self._seen):
            if current.get(path) != self._seen.get(path):
                changed.setdefault(owners[path.parent], set()).add(path.name)
        self._seen = current
        return self._invalidate(changed)


class InotifyWatcher(ChangeWatcher):
    """Kernel change notifications for the record directories.

    Raises:
        ImportError: If inotify_simple is not installed
        OSError: If inotify cannot be used on this system
    """

    def __init__(self, repos: Repos, interval: float = 1.0):
        import inotify_simple

        super().__init__(repos, interval)
        self._flags = inotify_simple.flags
        self._mask = (
            self._flags.CREATE
            | self._flags.CLOSE_WRITE
            | self._flags.MOVED_TO
            | self._flags.MOVED_FROM
            | self._flags.DELETE
        )
        self._inotify = inotify_simple.INotify()
        self._watched: Dict[int, RecordRepository] = {}
        try:
            for directory, repo in self.directories():
                directory.mkdir(parents=True, exist_ok=True)
                wd = self._inotify.add_watch(str(directory), self._mask)
                self._watched[wd] = repo
        except OSError:
            self._inotify.close()
            raise

    def _collect(self, events: Iterable) -> Dict[RecordRepository, Set[str]]:
        changed: Dict[RecordRepository, Set[str]] = {}
        for event in events:
            repo = self._watched.get(event.wd)
            if repo is None or not _is_record_file(event.name):
                continue
            changed.setdefault(repo, set()).add(event.name)
        return changed

    def _read(self, timeout_ms: int) -> List[str]:
        changed: Dict[RecordRepository, Set[str]] = {}
        events = self._inotify.read(timeout=timeout_ms)
        while events:
            for repo, names in self._collect(events).items():
                changed.setdefault(repo, set()).update(names)
            events = self._inotify.read(timeout=0)
        return self._invalidate(changed)

    def poll(self) -> List[str]:
        """Drain pending notifications without blocking.

        Returns:
            Keys of records whose files were created, written, moved or removed
        """
        return self._read(0)

    def _wait(self, stop_event: threading.Event) -> List[str]:
        return self._read(max(1, int(self.interval * 1000)))

    def close(self) -> None:
        self._inotify.close()


def open_watcher(repos: Repos, interval: float = 1.0) -> ChangeWatcher:
    """An inotify watcher where the platform supports it, polling otherwise."""
    try:
        return InotifyWatcher(repos, interval)
    except ImportError:
        logger.warning("inotify_simple not available, falling back to polling")
    except OSError as e:
        logger.warning("inotify unavailable (%s), falling back to polling", e)
    return PollingWatcher(repos, interval)
