"""Tests for the frontmatter codec."""

from datetime import datetime, timezone

import pytest

YAML_DOC = """---
id: peas-abc12
title: Fix login
type: bug
status: todo
tags: [auth, ui]
created: 2024-01-01T00:00:00Z
updated: 2024-01-02T00:00:00Z
---

Steps to reproduce.
"""

TOML_DOC = """+++
id = "peas-abc12"
title = "Fix login"
type = "bug"
status = "todo"
tags = ["auth", "ui"]
created = 2024-01-01T00:00:00Z
updated = "2024-01-02T00:00:00Z"
+++

Steps to reproduce.
"""

FLAT_DOC = """id: peas-abc12
title: Fix login
type: bug
status: todo
tags: auth, ui
created: 2024-01-01T00:00:00Z
updated: 2024-01-02T00:00:00Z

Steps to reproduce.
"""


@pytest.mark.parametrize(
    "text,expected",
    [(YAML_DOC, "yaml"), (TOML_DOC, "toml"), (FLAT_DOC, "flat")],
)
def test_decode_each_format(text, expected):
    """All three header syntaxes decode to the same ticket."""
    from peas_core.frontmatter import decode

    fmt, ticket, body = decode(text)

    assert fmt.value == expected
    assert ticket.format is fmt
    assert ticket.id == "peas-abc12"
    assert ticket.title == "Fix login"
    assert ticket.tags == ["auth", "ui"]
    assert ticket.created == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert ticket.updated == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert body == "Steps to reproduce."
    assert ticket.body == body


def test_encode_uses_fences():
    from peas_core.frontmatter import FrontmatterFormat, decode, encode

    ticket = decode(YAML_DOC).record

    assert encode(FrontmatterFormat.YAML, ticket).startswith("---\nid: peas-abc12\n")
    assert encode(FrontmatterFormat.TOML, ticket).startswith('+++\nid = "peas-abc12"\n')
    assert encode(FrontmatterFormat.FLAT, ticket).startswith("id: peas-abc12\n")


@pytest.mark.parametrize("fmt", ["yaml", "toml", "flat"])
def test_reencoding_preserves_content(fmt):
    """Body, extras and timestamps survive a write in any format."""
    from peas_core.frontmatter import FrontmatterFormat, decode, encode
    from peas_core.models import Ticket

    ticket = Ticket(
        id="peas-abc12",
        title='Quote "this": or not',
        tags=["a b", "c"],
        parent="peas-zzz99",
        created=datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=timezone.utc),
        updated=datetime(2024, 5, 2, tzinfo=timezone.utc),
        body="\nLeading blank line\n\n- item\n",
        extra={"estimate": 3, "owner": "sam"},
    )

    text = encode(FrontmatterFormat(fmt), ticket)
    again = decode(text).record

    assert again == ticket


def test_empty_body_leaves_nothing_after_header():
    from peas_core.frontmatter import FrontmatterFormat, decode, encode
    from peas_core.models import Ticket

    ticket = Ticket(id="peas-abc12", title="x")
    text = encode(FrontmatterFormat.TOML, ticket)

    assert text.endswith("+++\n")
    assert decode(text).body == ""


def test_body_separated_by_one_blank_line():
    from peas_core.frontmatter import FrontmatterFormat, encode
    from peas_core.models import Ticket

    text = encode(FrontmatterFormat.YAML, Ticket(id="peas-abc12", title="x", body="Hello"))

    assert text.endswith("---\n\nHello\n")


def test_byte_order_mark_and_leading_blank_lines_ignored():
    from peas_core.frontmatter import decode

    fmt, ticket, _ = decode("\ufeff\n\n" + YAML_DOC)

    assert fmt.value == "yaml"
    assert ticket.id == "peas-abc12"


def test_unsupported_fence():
    from peas_core.frontmatter import decode
    from peas_core.exceptions import ParseError

    with pytest.raises(ParseError, match="Unsupported frontmatter delimiter"):
        decode(";;;\nid: x\n;;;\n")


def test_unterminated_header():
    from peas_core.frontmatter import decode
    from peas_core.exceptions import ParseError

    with pytest.raises(ParseError, match="Unterminated"):
        decode("---\nid: peas-abc12\ntitle: x\n")


def test_no_header():
    from peas_core.frontmatter import decode
    from peas_core.exceptions import ParseError

    with pytest.raises(ParseError, match="No frontmatter header"):
        decode("Just some markdown\n")


def test_header_must_be_mapping():
    from peas_core.frontmatter import decode
    from peas_core.exceptions import ParseError

    with pytest.raises(ParseError, match="must be a mapping"):
        decode("---\n- a\n- b\n---\n")


def test_parse_error_names_file():
    from peas_core.frontmatter import decode
    from peas_core.exceptions import ParseError

    with pytest.raises(ParseError) as excinfo:
        decode("---\nid: peas-abc12\n---\n", path="peas-abc12.md")

    assert excinfo.value.path == "peas-abc12.md"
    assert str(excinfo.value).startswith("peas-abc12.md: ")


def test_decode_note():
    from peas_core.frontmatter import decode
    from peas_core.models import Note

    note = decode("key: deploy\ntags: ops\n\nUse blue/green\n", kind=Note).record

    assert isinstance(note, Note)
    assert note.key == "deploy"
    assert note.tags == ["ops"]
    assert note.body == "Use blue/green"


def test_flat_header_keeps_colon_values_as_text():
    from peas_core.frontmatter import split_document

    _, header, _ = split_document("id: x\nnote: see: above\n")

    assert header["note"] == "see: above"
