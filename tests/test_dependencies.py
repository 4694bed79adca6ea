"""Tests for parent and blocking relationship rules."""

from datetime import datetime, timedelta, timezone

import pytest


def _records(*specs):
    """Build an id -> Ticket snapshot from (id, parent, blocking) tuples."""
    from peas_core.models import Ticket

    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    records = {}
    for offset, (record_id, parent, blocking) in enumerate(specs):
        records[record_id] = Ticket(
            id=record_id,
            title=record_id,
            parent=parent,
            blocking=list(blocking),
            created=base + timedelta(minutes=offset),
        )
    return records


def test_validate_parent_accepts_valid_parent():
    from peas_core.dependencies import validate_parent

    records = _records(("a", None, []), ("b", None, []))

    validate_parent("b", "a", records)
    validate_parent("b", None, records)


def test_validate_parent_self_reference():
    from peas_core.dependencies import validate_parent
    from peas_core.exceptions import SelfRefError

    with pytest.raises(SelfRefError):
        validate_parent("a", "a", _records(("a", None, [])))


def test_validate_parent_missing_parent():
    from peas_core.dependencies import validate_parent
    from peas_core.exceptions import OrphanError

    with pytest.raises(OrphanError, match="does not exist"):
        validate_parent("a", "ghost", _records(("a", None, [])))


def test_validate_parent_cycle():
    """a <- b <- c; making c the parent of a closes a loop."""
    from peas_core.dependencies import validate_parent
    from peas_core.exceptions import CycleError

    records = _records(("a", None, []), ("b", "a", []), ("c", "b", []))

    with pytest.raises(CycleError):
        validate_parent("a", "c", records)


def test_detect_cycle_stops_on_existing_loop():
    """Data that already loops must not hang the walk."""
    from peas_core.dependencies import detect_cycle

    records = _records(("x", "y", []), ("y", "x", []), ("a", None, []))

    assert detect_cycle("a", "x", records) is True


def test_validate_parent_names_existing_loop():
    """A loop already in the data is reported as such, not as a new cycle."""
    from peas_core.dependencies import validate_parent
    from peas_core.exceptions import CycleError

    records = _records(("x", "y", []), ("y", "x", []), ("a", None, []))

    with pytest.raises(CycleError, match="already contains a cycle"):
        validate_parent("a", "x", records)

    records = _records(("a", None, []), ("b", "a", []))
    with pytest.raises(CycleError, match="would create a cycle"):
        validate_parent("a", "b", records)


def test_detect_cycle_missing_ancestor_is_not_a_cycle():
    from peas_core.dependencies import detect_cycle

    records = _records(("a", None, []), ("b", "gone", []))

    assert detect_cycle("a", "b", records) is False


def test_validate_blocking_rules():
    from peas_core.dependencies import validate_blocking
    from peas_core.exceptions import CycleError, OrphanError, SelfRefError

    records = _records(("a", None, ["b"]), ("b", None, ["c"]), ("c", None, []))

    validate_blocking("a", ["c"], records)
    with pytest.raises(SelfRefError):
        validate_blocking("a", ["a"], records)
    with pytest.raises(OrphanError):
        validate_blocking("a", ["ghost"], records)
    with pytest.raises(CycleError, match="c cannot block a"):
        validate_blocking("c", ["a"], records)


def test_children_descendants_and_ancestors():
    from peas_core.dependencies import get_ancestors, get_children, get_descendants

    records = _records(
        ("epic", None, []),
        ("story", "epic", []),
        ("task1", "story", []),
        ("task2", "story", []),
    )

    assert [t.id for t in get_children("story", records)] == ["task1", "task2"]
    assert [t.id for t in get_descendants("epic", records)] == ["story", "task1", "task2"]
    assert [t.id for t in get_ancestors("task2", records)] == ["story", "epic"]


def test_blockers_and_is_blocked():
    from peas_core.dependencies import get_blockers, is_blocked

    records = _records(("a", None, ["c"]), ("b", None, ["c"]), ("c", None, []))

    assert [t.id for t in get_blockers("c", records)] == ["a", "b"]
    assert is_blocked("c", records)

    records["a"].status = "completed"
    records["b"].status = "scrapped"
    assert not is_blocked("c", records)


def test_has_open_children():
    from peas_core.dependencies import has_open_children

    records = _records(("p", None, []), ("c", "p", []))

    assert has_open_children("p", records)
    records["c"].status = "completed"
    assert not has_open_children("p", records)
