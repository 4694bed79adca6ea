"""ID generation for peas - hash-based random ids and a sequential counter."""

import hashlib
import logging
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Set

from peas_core.constants import BASE36_CHARS, LOCK_TIMEOUT, MAX_ID_LENGTH, MAX_ID_RETRIES
from peas_core.exceptions import ExhaustedError, StoreIOError, ValidationError
from peas_core.utils import atomic_write_text, check_path_component, file_lock

if TYPE_CHECKING:
    from peas_core.config import PeasConfig

__all__ = [
    "generate_random_id",
    "SequentialCounter",
    "next_id",
    "validate_id",
    "check_id_safety",
    "id_suffix",
    "normalize_id",
]

logger = logging.getLogger(__name__)


def generate_random_id(
    prefix: str,
    length: int,
    existing_ids: Optional[Set[str]] = None,
    max_retries: int = MAX_ID_RETRIES,
    title: str = "",
) -> str:
    """Generate a collision-resistant hash-based ID.

    Format: {prefix}{length-char-base36-hash}

    Args:
        prefix: Id prefix (e.g. "peas-")
        length: Number of suffix characters
        existing_ids: Set of existing IDs to check for collisions
        max_retries: Maximum attempts to generate unique ID
        title: Extra entropy

    Returns:
        Unique ID string, e.g. "peas-k3x9a"

    Raises:
        ExhaustedError: If unable to generate unique ID after max_retries

    Implementation notes:
        - Uses SHA256 hash of: title + nanosecond timestamp + random bytes
        - Truncates the base36 digest to ``length`` characters
        - Retries with fresh entropy if collision detected
    """
    if existing_ids is None:
        existing_ids = set()

    for attempt in range(max_retries):
        timestamp_ns = time.time_ns()
        random_bytes = os.urandom(16)
        entropy = f"{title}|{timestamp_ns}|{random_bytes.hex()}".encode("utf-8")

        hash_digest = hashlib.sha256(entropy).digest()
        hash_int = int.from_bytes(hash_digest, byteorder="big")
        suffix = _to_base36(hash_int)[:length].zfill(length)

        candidate = f"{prefix}{suffix}"
        if candidate not in existing_ids:
            return candidate
        logger.debug("id collision on %s (attempt %d)", candidate, attempt + 1)

    raise ExhaustedError(
        f"Unable to generate unique ID with prefix '{prefix}' after {max_retries} attempts"
    )


def _to_base36(num: int) -> str:
    """Convert integer to base36 string (0-9a-z)."""
    if num == 0:
        return "0"

    result = []
    while num > 0:
        num, remainder = divmod(num, 36)
        result.append(BASE36_CHARS[remainder])

    return "".join(reversed(result))


def id_suffix(record_id: str, prefix: str) -> str:
    """Strip the prefix from an id (ids without it are returned unchanged)."""
    if prefix and record_id.startswith(prefix):
        return record_id[len(prefix):]
    return record_id


def normalize_id(value: str, prefix: str) -> str:
    """Accept either a full id or a bare suffix; return the full id."""
    value = value.strip()
    if prefix and not value.startswith(prefix):
        return f"{prefix}{value}"
    return value


class SequentialCounter:
    """The persisted ``.id`` counter used in sequential mode.

    The file holds a single integer: the last value handed out. Every
    read-modify-write happens under an exclusive lock on a sibling lock file
    and is published with the atomic-write primitive, so a crash leaves
    either the old or the new value.
    """

    def __init__(self, path: Path, lock_path: Optional[Path] = None, lock_timeout: float = LOCK_TIMEOUT):
        self.path = Path(path)
        self.lock_path = Path(lock_path) if lock_path else self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def current(self) -> int:
        """Last value handed out (0 when the counter has never been used).

        Raises:
            StoreIOError: If the counter file is unreadable or corrupt
        """
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StoreIOError(f"Cannot read counter {self.path}: {e}") from e
        if not text:
            return 0
        try:
            return int(text)
        except ValueError as e:
            raise StoreIOError(f"Corrupt counter file {self.path}: {text!r}") from e

    def _write(self, value: int) -> None:
        try:
            atomic_write_text(self.path, f"{value}\n")
        except OSError as e:
            raise StoreIOError(f"Cannot write counter {self.path}: {e}") from e

    def reset(self, value: int) -> None:
        """Set the counter to value."""
        if value < 0:
            raise ValueError("Counter value cannot be negative")
        with file_lock(self.lock_path, timeout=self.lock_timeout):
            self._write(value)

    def next_value(self, existing_ids: Iterable[str] = (), prefix: str = "", width: int = 0) -> int:
        """Reserve and return the next free value.

        The next value is one past the larger of the stored counter and the
        highest numeric suffix among existing ids, skipping anything already
        in use.

        Args:
            existing_ids: Ids already present in the store
            prefix: Prefix to strip from existing ids
            width: Suffix width; 0 means unbounded

        Raises:
            LockError: If the counter lock cannot be taken in time
            ExhaustedError: If the next value no longer fits in ``width`` digits
            StoreIOError: If the counter cannot be read or written
        """
        used = set()
        for record_id in existing_ids:
            suffix = id_suffix(record_id, prefix)
            if suffix.isdigit():
                used.add(int(suffix))

        with file_lock(self.lock_path, timeout=self.lock_timeout):
            value = max(self.current(), max(used, default=0)) + 1
            while value in used:
                value += 1
            if width and len(str(value)) > width:
                raise ExhaustedError(
                    f"Sequential id space exhausted: {value} does not fit in {width} digits"
                )
            self._write(value)

        logger.debug("sequential counter advanced to %d", value)
        return value


def next_id(
    config: "PeasConfig",
    existing_ids: Optional[Set[str]] = None,
    counter: Optional[SequentialCounter] = None,
    title: str = "",
) -> str:
    """Produce a new id according to the store configuration.

    Raises:
        ExhaustedError: If no unused id could be produced
        ValueError: If sequential mode is configured without a counter
    """
    existing = existing_ids or set()
    if config.id_mode == "sequential":
        if counter is None:
            raise ValueError("Sequential id mode requires a counter")
        value = counter.next_value(existing, prefix=config.prefix, width=config.id_length)
        return f"{config.prefix}{value:0{config.id_length}d}"
    return generate_random_id(config.prefix, config.id_length, existing, title=title)


def check_id_safety(record_id: str) -> str:
    """Reject ids that are unusable as file names.

    Raises:
        ValidationError: If the id is empty, longer than 50 characters, or
            contains '..', '/', '\\' or NUL
    """
    check_path_component(record_id, "ID")
    if len(record_id) > MAX_ID_LENGTH:
        raise ValidationError(f"ID exceeds {MAX_ID_LENGTH} characters")
    return record_id


def validate_id(record_id: str, config: "PeasConfig", force: bool = False) -> bool:
    """Check that an id has the configured shape.

    Shape is prefix + ``id_length`` suffix characters: digits only in
    sequential mode, lowercase base36 in random mode. ``force`` keeps only
    the file-name safety checks.
    """
    try:
        check_id_safety(record_id)
    except ValidationError:
        return False
    if force:
        return True

    if not record_id.startswith(config.prefix):
        return False
    suffix = record_id[len(config.prefix):]
    if len(suffix) != config.id_length:
        return False
    if config.id_mode == "sequential":
        return suffix.isascii() and suffix.isdigit()
    return all(char in BASE36_CHARS for char in suffix)
