"""Shared utilities for peas - timestamps, atomic writes, file locking, path safety."""

import contextlib
import errno
import fcntl
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator, Union

from peas_core.constants import LOCK_TIMEOUT
from peas_core.exceptions import LockError, ValidationError

__all__ = [
    "now_utc",
    "get_iso_timestamp",
    "format_timestamp",
    "parse_timestamp",
    "next_timestamp",
    "atomic_write_text",
    "file_lock",
    "check_path_component",
]

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Errors os.link raises on filesystems without hard links
_NO_LINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EXDEV, errno.EOPNOTSUPP}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with a Z suffix.

    Examples:
        >>> format_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc))
        '2024-01-01T00:00:00Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO format with Z suffix.

    Returns:
        ISO 8601 formatted timestamp string (e.g., "2024-01-15T10:30:00.123456Z")
    """
    return format_timestamp(now_utc())


def parse_timestamp(value: Any) -> datetime:
    """Coerce a header value into an aware UTC datetime.

    Accepts datetime objects (YAML and TOML both produce them for unquoted
    timestamps), dates, and ISO 8601 strings. Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not a recognizable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """Current time, forced strictly past ``previous``.

    Two mutations inside one clock tick must still produce increasing values.
    """
    current = now_utc()
    if current <= previous:
        current = previous + timedelta(microseconds=1)
    return current


def atomic_write_text(path: Union[str, Path], content: str, exclusive: bool = False) -> None:
    """Write *content* to *path* atomically.

    The text goes to a temporary file in the same directory, which is flushed
    and fsynced before being moved over the target with ``os.replace``. A
    crash at any point leaves either the old file or the new one, never a
    truncated target.

    Args:
        path: Target file
        content: Full file content
        exclusive: Publish with a hard link instead of a rename, so an
            existing target is never replaced

    Raises:
        FileExistsError: If ``exclusive`` and the target already exists
        OSError: On any filesystem failure (the temporary file is removed)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, 0o644)

        if exclusive:
            _publish_exclusive(tmp_path, path)
        else:
            os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise

    _fsync_directory(path.parent)


def _publish_exclusive(tmp_path: Path, path: Path) -> None:
    """Move tmp_path to path, failing if path already exists."""
    try:
        os.link(tmp_path, path)
    except FileExistsError:
        raise
    except OSError as e:
        if e.errno not in _NO_LINK_ERRNOS:
            raise
        # No hard links on this filesystem: check, then rename
        logger.debug("hard links unavailable in %s, using rename", path.parent)
        if path.exists():
            raise FileExistsError(errno.EEXIST, "File exists", str(path)) from None
        os.replace(tmp_path, path)
        return
    tmp_path.unlink()


def _fsync_directory(directory: Path) -> None:
    """Flush a directory entry so a completed rename survives power loss."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    with contextlib.suppress(OSError):
        dir_fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


@contextmanager
def file_lock(lock_path: Path, timeout: float = LOCK_TIMEOUT) -> Generator[object, None, None]:
    """Acquire an exclusive file lock.

    Args:
        lock_path: Path to lock file
        timeout: Maximum time to wait for lock (seconds)

    Yields:
        The lock file object

    Raises:
        LockError: If unable to acquire lock within timeout

    Usage:
        with file_lock(Path(".peas/.id.lock")):
            # Critical section
            pass
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock_file = open(lock_path, "w")

    try:
        start_time = time.time()
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                # Lock held by another process
                if time.time() - start_time >= timeout:
                    raise LockError(
                        f"Could not acquire lock on {lock_path} within {timeout}s"
                    )
                time.sleep(0.01)

        yield lock_file

    finally:
        with contextlib.suppress(OSError):
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        lock_file.close()


def check_path_component(name: str, what: str = "Name") -> str:
    """Reject names that could escape their directory.

    Raises:
        ValidationError: If the name is empty or contains separators,
            NUL bytes, or '..'
    """
    if not name:
        raise ValidationError(f"{what} cannot be empty")
    if ".." in name:
        raise ValidationError(f"{what} cannot contain '..' (path traversal)")
    for forbidden in ("/", "\\", "\0"):
        if forbidden in name:
            raise ValidationError(f"{what} cannot contain {forbidden!r}")
    return name
