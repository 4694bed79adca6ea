"""Frontmatter codec for peas record files.

A record file is a header followed by a markdown body. Three header
syntaxes are understood:

    YAML       TOML        FLAT
    ---        +++         id: peas-abc12
    id: ...    id = "..."  title: Fix the thing
    ---        +++
                           Body starts after the first blank line.
    Body...    Body...

The format a record was read with is remembered on ``record.format`` and the
repository writes it back the same way; only ``migrate_format`` changes it.

Body layout is the same for all three: the body is separated from the
header by one blank line and the file ends with a newline. An empty body
leaves nothing after the header.
"""

import json
import re
import tomllib
from typing import Any, Dict, NamedTuple, Optional, Tuple, Type, Union

import tomli_w
import yaml

from peas_core.exceptions import ParseError
from peas_core.models import FrontmatterFormat, Note, Ticket

__all__ = [
    "FrontmatterFormat",
    "Decoded",
    "detect_format",
    "split_document",
    "join_document",
    "decode",
    "encode",
]

Record = Union[Ticket, Note]

_YAML_FENCE = "---"
_TOML_FENCE = "+++"

_YAML_BLOCK = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*\r?$\n?", re.DOTALL | re.MULTILINE)
_TOML_BLOCK = re.compile(r"\A\+\+\+[ \t]*\r?\n(.*?)^\+\+\+[ \t]*\r?$\n?", re.DOTALL | re.MULTILINE)

# ;;; or === or ~~~ ... anything fence-like we do not support
_OTHER_FENCE = re.compile(r"\A([^\w\s])\1{2,}[ \t]*$")
_FLAT_LINE = re.compile(r"\A([A-Za-z_][\w.-]*)[ \t]*:(?:[ \t](.*)|)\Z")

# Flat-header fields whose values are plain strings (written bare when safe)
_FLAT_STRING_FIELDS = {
    "id", "key", "title", "type", "status", "priority", "parent", "created", "updated",
}
# Flat-header fields whose values are lists
_FLAT_LIST_FIELDS = {"tags", "blocking", "assets"}


class Decoded(NamedTuple):
    format: FrontmatterFormat
    record: Record
    body: str


def _strip_leading(text: str) -> str:
    text = text.lstrip("\ufeff")
    while text.startswith(("\n", "\r\n")):
        text = text[1:] if text.startswith("\n") else text[2:]
    return text


def _first_line(text: str) -> str:
    return text.split("\n", 1)[0].rstrip("\r")


def detect_format(text: str) -> FrontmatterFormat:
    """Work out which header syntax a document uses.

    Raises:
        ParseError: If the document starts with an unsupported fence or has
            no recognizable header at all
    """
    text = _strip_leading(text)
    first = _first_line(text).rstrip()

    if first == _YAML_FENCE:
        return FrontmatterFormat.YAML
    if first == _TOML_FENCE:
        return FrontmatterFormat.TOML
    if _OTHER_FENCE.match(first):
        raise ParseError(f"Unsupported frontmatter delimiter: {first!r}")
    if _FLAT_LINE.match(first):
        return FrontmatterFormat.FLAT
    raise ParseError("No frontmatter header found")


def _body_from_rest(rest: str) -> str:
    if rest.startswith("\r\n"):
        rest = rest[2:]
    elif rest.startswith("\n"):
        rest = rest[1:]
    if rest.endswith("\n"):
        rest = rest[:-1]
    return rest


def _rest_from_body(body: str) -> str:
    if not body:
        return ""
    return "\n" + body + "\n"


def _split_fenced(pattern: "re.Pattern[str]", text: str, fence: str) -> Tuple[str, str]:
    match = pattern.match(text)
    if not match:
        raise ParseError(f"Unterminated frontmatter: missing closing {fence!r}")
    return match.group(1), text[match.end():]


# -- FLAT values --------------------------------------------------------------


def _flat_load_value(name: str, raw: str) -> Any:
    raw = raw.rstrip()
    if name in _FLAT_STRING_FIELDS:
        if raw.startswith('"'):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as e:
                raise ParseError(f"Field '{name}': bad quoted string: {e}") from e
        return raw
    if name in _FLAT_LIST_FIELDS:
        if raw.startswith("["):
            try:
                value = yaml.safe_load(raw)
            except yaml.YAMLError as e:
                raise ParseError(f"Field '{name}': bad list: {e}") from e
            if not isinstance(value, list):
                raise ParseError(f"Field '{name}' must be a list")
            return value
        return [part.strip() for part in raw.split(",") if part.strip()]
    try:
        value = yaml.safe_load(raw) if raw else None
    except yaml.YAMLError:
        return raw
    if isinstance(value, dict) and not raw.startswith("{"):
        # "a: b" reads as a mapping; keep what the author wrote
        return raw
    return value


def _is_bare_safe(value: str) -> bool:
    if not value or value != value.strip():
        return False
    if value.startswith('"'):
        return False
    return value.isprintable()


def _flat_dump_value(name: str, value: Any) -> str:
    if name in _FLAT_STRING_FIELDS and isinstance(value, str):
        return value if _is_bare_safe(value) else json.dumps(value, ensure_ascii=False)
    if name in _FLAT_LIST_FIELDS and isinstance(value, list):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, str) and not value.isprintable():
        return json.dumps(value, ensure_ascii=False)
    dumped = yaml.safe_dump(
        value, default_flow_style=True, allow_unicode=True, width=float("inf")
    )
    if dumped.endswith("\n...\n"):
        dumped = dumped[: -len("\n...\n")]
    return dumped.rstrip("\n")


def _split_flat(text: str) -> Tuple[Dict[str, Any], str]:
    header: Dict[str, Any] = {}
    pos = 0
    while pos < len(text):
        end = text.find("\n", pos)
        if end == -1:
            end = len(text)
        line = text[pos:end].rstrip("\r")
        if not line.strip():
            break
        match = _FLAT_LINE.match(line)
        if not match:
            raise ParseError(f"Malformed header line: {line!r}")
        name, raw = match.group(1), match.group(2) or ""
        header[name] = _flat_load_value(name, raw)
        pos = end + 1
    return header, text[pos:] if pos < len(text) else ""


# -- documents ----------------------------------------------------------------


def split_document(text: str) -> Tuple[FrontmatterFormat, Dict[str, Any], str]:
    """Split a document into (format, header mapping, body).

    Raises:
        ParseError: If the header cannot be parsed or is not a mapping
    """
    text = _strip_leading(text)
    fmt = detect_format(text)

    if fmt is FrontmatterFormat.YAML:
        raw_header, rest = _split_fenced(_YAML_BLOCK, text, _YAML_FENCE)
        try:
            header = yaml.safe_load(raw_header)
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML frontmatter: {e}") from e
        if header is None:
            header = {}
    elif fmt is FrontmatterFormat.TOML:
        raw_header, rest = _split_fenced(_TOML_BLOCK, text, _TOML_FENCE)
        try:
            header = tomllib.loads(raw_header)
        except tomllib.TOMLDecodeError as e:
            raise ParseError(f"Invalid TOML frontmatter: {e}") from e
    else:
        header, rest = _split_flat(text)

    if not isinstance(header, dict):
        raise ParseError("Frontmatter must be a mapping")
    return fmt, header, _body_from_rest(rest)


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value if v is not None]
    return value


def join_document(fmt: FrontmatterFormat, header: Dict[str, Any], body: str = "") -> str:
    """Serialize a header mapping and body into document text."""
    if fmt is FrontmatterFormat.YAML:
        dumped = yaml.safe_dump(
            header, sort_keys=False, allow_unicode=True, default_flow_style=False
        )
        head = f"{_YAML_FENCE}\n{dumped}{_YAML_FENCE}\n"
    elif fmt is FrontmatterFormat.TOML:
        dumped = tomli_w.dumps(_drop_none(header))
        head = f"{_TOML_FENCE}\n{dumped}{_TOML_FENCE}\n"
    else:
        head = "".join(
            f"{name}: {_flat_dump_value(name, value)}\n" for name, value in header.items()
        )
    return head + _rest_from_body(body)


def decode(text: str, kind: Type[Record] = Ticket, path: Optional[str] = None) -> Decoded:
    """Decode a record file.

    Args:
        text: Full file content
        kind: Record class to build (Ticket or Note)
        path: Used only to make error messages point at the file

    Returns:
        Decoded(format, record, body); ``record.format`` is set and
        ``record.body`` equals ``body``

    Raises:
        ParseError: If the document is malformed
    """
    try:
        fmt, header, body = split_document(text)
        record = kind.from_header(header, body)
    except ParseError as e:
        if path and not e.path:
            raise ParseError(str(e), path=path) from e
        raise
    record.format = fmt
    return Decoded(fmt, record, body)


def encode(fmt: FrontmatterFormat, record: Record, body: Optional[str] = None) -> str:
    """Encode a record in the given header format.

    ``body`` defaults to ``record.body``.
    """
    return join_document(fmt, record.to_header(), record.body if body is None else body)
