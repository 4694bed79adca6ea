"""Record value objects: Ticket and Note.

Both records are plain dataclasses. Header dictionaries (what the
frontmatter codec reads and writes) are produced by ``to_header`` and
consumed by ``from_header``; the body travels separately.
"""

import copy
import enum
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from peas_core.constants import (
    CLOSED_STATUSES,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    DEFAULT_TYPE,
    MAX_BODY_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TITLE_LENGTH,
    OPEN_STATUSES,
    PRIORITY_ALIASES,
    STATUS_ALIASES,
    VALID_PRIORITIES,
    VALID_STATUSES,
    VALID_TYPES,
)
from peas_core.exceptions import ParseError, ValidationError
from peas_core.utils import EPOCH, format_timestamp, next_timestamp, parse_timestamp

__all__ = [
    "FrontmatterFormat",
    "Ticket",
    "Note",
    "normalize_status",
    "normalize_priority",
    "normalize_type",
    "check_note_key",
]

# Characters that are unsafe in a note key on at least one common filesystem
_NOTE_KEY_FORBIDDEN = '/\\:*?"<>|\0'


class FrontmatterFormat(enum.Enum):
    """Header syntax of a record file."""

    YAML = "yaml"  # fenced by ---
    TOML = "toml"  # fenced by +++
    FLAT = "flat"  # bare key: value lines, ended by a blank line


def normalize_status(value: str) -> str:
    """Map a status (or one of its aliases) to its canonical name.

    Raises:
        ValueError: If the value is not a known status
    """
    status = str(value).strip().lower()
    status = STATUS_ALIASES.get(status, status)
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {value}. Must be one of {VALID_STATUSES}")
    return status


def normalize_priority(value: str) -> str:
    """Map a priority (or p0..p4) to its canonical name.

    Raises:
        ValueError: If the value is not a known priority
    """
    priority = str(value).strip().lower()
    priority = PRIORITY_ALIASES.get(priority, priority)
    if priority not in VALID_PRIORITIES:
        raise ValueError(f"Invalid priority: {value}. Must be one of {VALID_PRIORITIES}")
    return priority


def normalize_type(value: str) -> str:
    ticket_type = str(value).strip().lower()
    if ticket_type not in VALID_TYPES:
        raise ValueError(f"Invalid type: {value}. Must be one of {VALID_TYPES}")
    return ticket_type


def check_note_key(key: str) -> str:
    """Reject note keys that cannot be used as a file name.

    Raises:
        ValidationError: If the key is empty or contains unsafe characters
    """
    if not key or not key.strip():
        raise ValidationError("Note key cannot be empty")
    if ".." in key:
        raise ValidationError("Note key cannot contain '..' (path traversal)")
    for char in _NOTE_KEY_FORBIDDEN:
        if char in key:
            raise ValidationError(f"Note key cannot contain {char!r}")
    return key


def _as_str(header: Dict[str, Any], name: str, required: bool = False) -> Optional[str]:
    value = header.get(name)
    if value is None or value == "":
        if required:
            raise ParseError(f"Missing required field '{name}'")
        return None
    if isinstance(value, (dict, list)):
        raise ParseError(f"Field '{name}' must be a string, got {type(value).__name__}")
    return str(value)


def _as_list(header: Dict[str, Any], name: str) -> List[str]:
    value = header.get(name)
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if not isinstance(value, list):
        raise ParseError(f"Field '{name}' must be a list, got {type(value).__name__}")
    for item in value:
        if isinstance(item, (dict, list)) or item is None:
            raise ParseError(f"Field '{name}' must contain only strings")
    return [str(item) for item in value]


def _as_timestamp(header: Dict[str, Any], name: str) -> datetime:
    value = header.get(name)
    if value is None or value == "":
        return EPOCH
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise ParseError(f"Field '{name}': {e}") from e


def _check_tags(tags: List[str]) -> None:
    for tag in tags:
        if not tag or not tag.strip():
            raise ValidationError("Tags cannot be empty")
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tag '{tag[:20]}...' exceeds {MAX_TAG_LENGTH} characters")


class _Record:
    """Behaviour shared by Ticket and Note."""

    KIND: ClassVar[str] = "Record"
    KEY_FIELD: ClassVar[str] = "id"
    NON_SEMANTIC: ClassVar[Tuple[str, ...]] = ("updated", "format")

    @property
    def key(self) -> str:
        return getattr(self, self.KEY_FIELD)

    def semantic_fields(self) -> Dict[str, Any]:
        """Every field except the ones a write is allowed to change on its own."""
        return {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if f.name not in self.NON_SEMANTIC
        }

    def touch(self) -> datetime:
        """Advance ``updated``; strictly increasing even within one clock tick."""
        self.updated = next_timestamp(self.updated)
        return self.updated

    def copy(self):
        return copy.deepcopy(self)


@dataclass
class Ticket(_Record):
    """A ticket: one file at ``<root>/<id>.md``."""

    KIND: ClassVar[str] = "Ticket"
    KEY_FIELD: ClassVar[str] = "id"

    id: str = ""
    title: str = ""
    type: str = DEFAULT_TYPE
    status: str = DEFAULT_STATUS
    priority: str = DEFAULT_PRIORITY
    tags: List[str] = field(default_factory=list)
    parent: Optional[str] = None
    blocking: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    created: datetime = EPOCH
    updated: datetime = EPOCH
    body: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)
    format: Optional[FrontmatterFormat] = field(default=None, compare=False)

    _HEADER_FIELDS: ClassVar[Tuple[str, ...]] = (
        "id",
        "title",
        "type",
        "status",
        "priority",
        "tags",
        "parent",
        "blocking",
        "assets",
        "created",
        "updated",
    )

    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def normalize(self) -> "Ticket":
        """Canonicalize enum aliases in place.

        Raises:
            ValidationError: If type, status or priority is unknown
        """
        try:
            self.type = normalize_type(self.type)
            self.status = normalize_status(self.status)
            self.priority = normalize_priority(self.priority)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if self.parent == "":
            self.parent = None
        self.tags = list(dict.fromkeys(self.tags))
        self.blocking = list(dict.fromkeys(self.blocking))
        return self

    def validate(self) -> None:
        """Check field-level constraints. Relationships are checked elsewhere.

        Raises:
            ValidationError: If any field is out of bounds
        """
        self.normalize()
        if not self.title or not self.title.strip():
            raise ValidationError("Title cannot be empty")
        if len(self.title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters")
        if len(self.body) > MAX_BODY_LENGTH:
            raise ValidationError(f"Body exceeds {MAX_BODY_LENGTH} characters")
        _check_tags(self.tags)

    def to_header(self) -> Dict[str, Any]:
        """Header mapping in canonical field order, extras last.

        Empty lists and a missing parent are left out.
        """
        header: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
        }
        if self.tags:
            header["tags"] = list(self.tags)
        if self.parent:
            header["parent"] = self.parent
        if self.blocking:
            header["blocking"] = list(self.blocking)
        if self.assets:
            header["assets"] = list(self.assets)
        header["created"] = format_timestamp(self.created)
        header["updated"] = format_timestamp(self.updated)
        for name, value in self.extra.items():
            header.setdefault(name, copy.deepcopy(value))
        return header

    @classmethod
    def from_header(cls, header: Dict[str, Any], body: str = "") -> "Ticket":
        """Build a ticket from a decoded header.

        Raises:
            ParseError: If a required field is missing or a value has the
                wrong shape
        """
        try:
            ticket_type = normalize_type(_as_str(header, "type", required=True))
            status = normalize_status(_as_str(header, "status", required=True))
            priority = normalize_priority(_as_str(header, "priority") or DEFAULT_PRIORITY)
        except ValueError as e:
            raise ParseError(str(e)) from e

        return cls(
            id=_as_str(header, "id", required=True),
            title=_as_str(header, "title", required=True),
            type=ticket_type,
            status=status,
            priority=priority,
            tags=_as_list(header, "tags"),
            parent=_as_str(header, "parent"),
            blocking=_as_list(header, "blocking"),
            assets=_as_list(header, "assets"),
            created=_as_timestamp(header, "created"),
            updated=_as_timestamp(header, "updated"),
            body=body,
            extra={k: v for k, v in header.items() if k not in cls._HEADER_FIELDS},
        )


@dataclass
class Note(_Record):
    """A knowledge note: one file at ``<root>/memory/<key>.md``."""

    KIND: ClassVar[str] = "Note"
    KEY_FIELD: ClassVar[str] = "key"

    key: str = ""
    tags: List[str] = field(default_factory=list)
    created: datetime = EPOCH
    updated: datetime = EPOCH
    body: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)
    format: Optional[FrontmatterFormat] = field(default=None, compare=False)

    _HEADER_FIELDS: ClassVar[Tuple[str, ...]] = ("key", "tags", "created", "updated")

    def validate(self) -> None:
        check_note_key(self.key)
        if len(self.body) > MAX_BODY_LENGTH:
            raise ValidationError(f"Body exceeds {MAX_BODY_LENGTH} characters")
        _check_tags(self.tags)

    def to_header(self) -> Dict[str, Any]:
        header: Dict[str, Any] = {"key": self.key}
        if self.tags:
            header["tags"] = list(self.tags)
        header["created"] = format_timestamp(self.created)
        header["updated"] = format_timestamp(self.updated)
        for name, value in self.extra.items():
            header.setdefault(name, copy.deepcopy(value))
        return header

    @classmethod
    def from_header(cls, header: Dict[str, Any], body: str = "") -> "Note":
        return cls(
            key=_as_str(header, "key", required=True),
            tags=_as_list(header, "tags"),
            created=_as_timestamp(header, "created"),
            updated=_as_timestamp(header, "updated"),
            body=body,
            extra={k: v for k, v in header.items() if k not in cls._HEADER_FIELDS},
        )
