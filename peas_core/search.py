"""Search queries and list filters.

Query syntax:

    bug                 case-insensitive substring over title, body, id, tags
    regex:bug.*fix      regular expression over the same fields
    title:parser        substring in one field
    tag:regex:^ui-      regex in one field

Fields: title, body, tag (or tags), id, status, priority, type. Notes also
understand key; ticket-only fields never match a note.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence, Union

from peas_core.constants import PRIORITY_ORDER
from peas_core.exceptions import ValidationError
from peas_core.models import Note, Ticket, normalize_priority, normalize_status, normalize_type

__all__ = [
    "SearchQuery",
    "parse_query",
    "ListFilter",
    "SORT_KEYS",
]

SEARCH_FIELDS = ("title", "body", "tag", "id", "status", "priority", "type", "key")
_FIELD_ALIASES = {"tags": "tag"}


@dataclass(frozen=True)
class SearchQuery:
    """A parsed query: an optional field and either a substring or a regex."""

    text: str
    field: Optional[str] = None
    regex: Optional[Pattern] = None

    def _match_value(self, value: str) -> bool:
        if self.regex is not None:
            return self.regex.search(value) is not None
        return self.text.lower() in value.lower()

    def _values(self, record: Union[Ticket, Note]) -> List[str]:
        if isinstance(record, Ticket):
            by_field = {
                "title": [record.title],
                "body": [record.body],
                "tag": list(record.tags),
                "id": [record.id],
                "status": [record.status],
                "priority": [record.priority],
                "type": [record.type],
            }
            default = ["title", "body", "id", "tag"]
        else:
            by_field = {
                "key": [record.key],
                "body": [record.body],
                "tag": list(record.tags),
            }
            default = ["key", "body", "tag"]

        names = [self.field] if self.field else default
        values: List[str] = []
        for name in names:
            values.extend(by_field.get(name, []))
        return values

    def matches(self, record: Union[Ticket, Note]) -> bool:
        return any(self._match_value(value) for value in self._values(record))


def parse_query(query: str) -> SearchQuery:
    """Parse a query string.

    Raises:
        ValidationError: If the query is empty or the regex does not compile
    """
    if not query:
        raise ValidationError("Empty query")

    field_name: Optional[str] = None
    head, sep, rest = query.partition(":")
    if sep:
        name = _FIELD_ALIASES.get(head.lower(), head.lower())
        if name in SEARCH_FIELDS:
            field_name = name
            query = rest
            if not query:
                raise ValidationError(f"Empty pattern for field '{head}'")
            head, sep, rest = query.partition(":")

    if sep and head == "regex":
        try:
            pattern = re.compile(rest)
        except re.error as e:
            raise ValidationError(f"Invalid regex: {e}") from e
        return SearchQuery(text=rest, field=field_name, regex=pattern)

    return SearchQuery(text=query, field=field_name)


def _priority_key(ticket: Ticket):
    return (PRIORITY_ORDER.get(ticket.priority, len(PRIORITY_ORDER)), ticket.created, ticket.id)


SORT_KEYS = {
    "created": lambda t: (t.created, t.id),
    "updated": lambda t: (t.updated, t.id),
    "id": lambda t: t.id,
    "title": lambda t: (t.title.lower(), t.id),
    "priority": _priority_key,
    "status": lambda t: (t.status, t.created, t.id),
    "type": lambda t: (t.type, t.created, t.id),
}


@dataclass
class ListFilter:
    """Predicate and ordering for ``TicketRepository.list``.

    Every set attribute must match. ``archived`` selects which area is
    scanned: False (default) active only, True archive only, None both.
    """

    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    tag: Optional[str] = None
    parent: Optional[str] = None
    query: Optional[Union[str, SearchQuery]] = None
    open_only: bool = False
    archived: Optional[bool] = False
    sort_by: str = "created"
    reverse: bool = False
    limit: Optional[int] = None
    predicate: Optional[Callable[[Ticket], bool]] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        try:
            if self.type is not None:
                self.type = normalize_type(self.type)
            if self.status is not None:
                self.status = normalize_status(self.status)
            if self.priority is not None:
                self.priority = normalize_priority(self.priority)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if isinstance(self.query, str):
            self.query = parse_query(self.query)
        if self.sort_by not in SORT_KEYS:
            raise ValidationError(f"Cannot sort by {self.sort_by}. Must be one of {tuple(SORT_KEYS)}")

    def matches(self, ticket: Ticket) -> bool:
        if self.type is not None and ticket.type != self.type:
            return False
        if self.status is not None and ticket.status != self.status:
            return False
        if self.priority is not None and ticket.priority != self.priority:
            return False
        if self.tag is not None and self.tag not in ticket.tags:
            return False
        if self.parent is not None and ticket.parent != self.parent:
            return False
        if self.open_only and not ticket.is_open():
            return False
        if self.query is not None and not self.query.matches(ticket):
            return False
        if self.predicate is not None and not self.predicate(ticket):
            return False
        return True

    def apply(self, tickets: Sequence[Ticket]) -> List[Ticket]:
        """Filter, sort and truncate."""
        selected = [t for t in tickets if self.matches(t)]
        selected.sort(key=SORT_KEYS[self.sort_by], reverse=self.reverse)
        if self.limit is not None:
            selected = selected[: self.limit]
        return selected
