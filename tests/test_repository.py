"""Tests for the ticket repository: files, cache, conflicts, relationships."""

import os

import pytest

MANUAL_YAML = """---
id: peas-abc12
title: Written by hand
type: task
status: todo
created: 2024-01-01T00:00:00Z
updated: 2024-01-01T00:00:00Z
---

Original body
"""


def test_create_writes_one_file(store, tickets):
    from peas_core.models import Ticket

    ticket_id = tickets.create(Ticket(title="First", tags=["ui"]))

    path = store.root / f"{ticket_id}.md"
    assert ticket_id.startswith("peas-")
    assert path.exists()
    assert path.read_text().startswith("+++\n")
    assert f'id = "{ticket_id}"' in path.read_text()


def test_create_sets_timestamps(make_ticket):
    ticket = make_ticket("First")

    assert ticket.created == ticket.updated
    assert ticket.created.year >= 2024


def test_read_accepts_bare_suffix(make_ticket, tickets):
    ticket = make_ticket("First")
    suffix = ticket.id[len("peas-"):]

    assert tickets.read(suffix).id == ticket.id


def test_read_missing_raises(tickets):
    from peas_core.exceptions import NotFoundError

    with pytest.raises(NotFoundError, match="Ticket not found"):
        tickets.read("peas-zzzzz")


def test_create_rejects_existing_id(make_ticket, tickets):
    from peas_core.models import Ticket
    from peas_core.exceptions import ValidationError

    existing = make_ticket("First")

    with pytest.raises(ValidationError, match="already exists"):
        tickets.create(Ticket(id=existing.id, title="Second"))


def test_create_rejects_invalid_ticket(store, tickets):
    from peas_core.models import Ticket
    from peas_core.exceptions import ValidationError

    with pytest.raises(ValidationError):
        tickets.create(Ticket(title=""))

    assert list(store.root.glob("*.md")) == []


def test_update_advances_updated(make_ticket, tickets):
    ticket = make_ticket("First")
    loaded_at = ticket.updated

    ticket.status = "in-progress"
    tickets.update(ticket)

    again = tickets.read(ticket.id)
    assert again.status == "in-progress"
    assert again.updated > loaded_at
    assert again.created == ticket.created


def test_update_without_changes_writes_nothing(store, make_ticket, tickets):
    ticket = make_ticket("First")
    path = store.root / f"{ticket.id}.md"
    before = path.read_text()

    tickets.update(ticket)

    assert path.read_text() == before
    assert len(store.undo) == 1


def test_stale_update_raises_conflict(store, make_ticket, tickets):
    """Two writers load the same ticket; the second one to write loses."""
    from peas_core.exceptions import ConflictError

    ticket = make_ticket("First")
    first = tickets.read(ticket.id)
    second = tickets.read(ticket.id)

    first.title = "From writer one"
    tickets.update(first)

    second.title = "From writer two"
    with pytest.raises(ConflictError) as excinfo:
        tickets.update(second)

    assert excinfo.value.retryable
    assert tickets.read(ticket.id).title == "From writer one"


def test_conflict_detected_across_repository_instances(store, make_ticket):
    """A second process writing the file invalidates a cached copy."""
    from peas_core.exceptions import ConflictError
    from peas_core.repository import TicketRepository

    ticket = make_ticket("First")
    stale = store.tickets.read(ticket.id)

    other = TicketRepository(store.root, store.config)
    theirs = other.read(ticket.id)
    theirs.priority = "high"
    other.update(theirs)

    stale.title = "Mine"
    with pytest.raises(ConflictError):
        store.tickets.update(stale)

    store.tickets.invalidate()
    fresh = store.tickets.read(ticket.id)
    assert fresh.priority == "high"
    fresh.title = "Mine"
    store.tickets.update(fresh)
    assert other.read(ticket.id).title == "Mine"


def test_failed_write_leaves_file_untouched(store, make_ticket, tickets, monkeypatch):
    """A crash before the rename keeps the old file and no temp files."""
    from peas_core.exceptions import StoreIOError

    ticket = make_ticket("First")
    path = store.root / f"{ticket.id}.md"
    before = path.read_text()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)

    ticket.title = "Changed"
    with pytest.raises(StoreIOError, match="disk full"):
        tickets.update(ticket)

    monkeypatch.undo()
    assert path.read_text() == before
    assert list(store.root.glob(".*.tmp")) == []


def test_format_is_sticky(store, tickets):
    """A hand-written YAML ticket stays YAML after an update."""
    path = store.root / "peas-abc12.md"
    path.write_text(MANUAL_YAML)

    ticket = tickets.read("peas-abc12")
    assert ticket.format.value == "yaml"
    ticket.title = "Edited"
    tickets.update(ticket)

    text = path.read_text()
    assert text.startswith("---\n")
    assert "title: Edited" in text
    assert text.endswith("\nOriginal body\n")


def test_unknown_header_fields_survive_update(store, tickets):
    path = store.root / "peas-abc12.md"
    path.write_text(MANUAL_YAML.replace("status: todo\n", "status: todo\nestimate: 5\n"))

    ticket = tickets.read("peas-abc12")
    ticket.title = "Edited"
    tickets.update(ticket)

    assert tickets.read("peas-abc12").extra == {"estimate": 5}
    assert "estimate: 5" in path.read_text()


def test_list_reports_unparseable_files(store, make_ticket, tickets):
    """One broken file never hides the others."""
    good = make_ticket("Good")
    (store.root / "peas-bad00.md").write_text("this is not a ticket\n")

    result = tickets.list()

    assert [t.id for t in result.records] == [good.id]
    assert list(result.errors) == ["peas-bad00"]
    assert "peas-bad00.md" in str(result.errors["peas-bad00"])


def test_list_reports_id_mismatch(store, tickets):
    (store.root / "peas-other.md").write_text(MANUAL_YAML)

    result = tickets.list()

    assert result.records == []
    assert "does not match file name" in str(result.errors["peas-other"])


def test_list_ignores_hidden_and_non_markdown_files(store, make_ticket, tickets):
    make_ticket("Good")
    (store.root / ".peas-abc12.md.tmp").write_text("partial")
    (store.root / "notes.txt").write_text("hello")

    result = tickets.list()

    assert len(result.records) == 1
    assert result.errors == {}


def test_list_filters_and_sorts(make_ticket, tickets):
    from peas_core.search import ListFilter

    make_ticket("Bug one", type="bug", priority="low")
    make_ticket("Bug two", type="bug", priority="critical")
    make_ticket("Chore", type="chore")

    result = tickets.list(ListFilter(type="bug", sort_by="priority"))

    assert [t.title for t in result.records] == ["Bug two", "Bug one"]


def test_parent_must_exist(make_ticket, tickets):
    from peas_core.models import Ticket
    from peas_core.exceptions import OrphanError

    with pytest.raises(OrphanError):
        tickets.create(Ticket(title="Child", parent="peas-zzzzz"))


def test_parent_self_reference_and_cycle(make_ticket, tickets):
    from peas_core.exceptions import CycleError, SelfRefError

    parent = make_ticket("Parent")
    child = make_ticket("Child", parent=parent.id)

    parent.parent = parent.id
    with pytest.raises(SelfRefError):
        tickets.update(parent)

    parent = tickets.read(parent.id)
    parent.parent = child.id
    with pytest.raises(CycleError):
        tickets.update(parent)

    assert tickets.read(parent.id).parent is None


def test_blocking_cycle_rejected(make_ticket, tickets):
    from peas_core.exceptions import CycleError, OrphanError

    b = make_ticket("B")
    a = make_ticket("A", blocking=[b.id])

    b.blocking = [a.id]
    with pytest.raises(CycleError):
        tickets.update(b)

    a = tickets.read(a.id)
    a.blocking.append("peas-zzzzz")
    with pytest.raises(OrphanError):
        tickets.update(a)


def test_children_and_blockers(make_ticket, tickets):
    epic = make_ticket("Epic", type="epic")
    story = make_ticket("Story", parent=epic.id)
    blocker = make_ticket("Blocker", blocking=[story.id])

    assert [t.id for t in tickets.children_of(epic.id)] == [story.id]
    assert [t.id for t in tickets.blocked_by_of(story.id)] == [blocker.id]


def test_delete_removes_file_and_assets(store, make_ticket, tickets):
    ticket = make_ticket("Doomed")
    asset = store.assets.asset_path(ticket.id, "screenshot.png")
    asset.parent.mkdir(parents=True)
    asset.write_bytes(b"png")

    tickets.delete(ticket.id)

    assert not (store.root / f"{ticket.id}.md").exists()
    assert not asset.parent.exists()
    assert not tickets.exists(ticket.id)


def test_delete_with_children_requires_cascade(make_ticket, tickets):
    from peas_core.exceptions import OrphanError

    parent = make_ticket("Parent")
    child = make_ticket("Child", parent=parent.id)

    with pytest.raises(OrphanError, match="has children"):
        tickets.delete(parent.id)

    rewritten = tickets.delete(parent.id, cascade=True)

    assert rewritten == [child.id]
    assert tickets.read(child.id).parent is None


def test_delete_strips_blocking_references(make_ticket, tickets):
    target = make_ticket("Target")
    blocker = make_ticket("Blocker", blocking=[target.id])

    tickets.delete(target.id)

    again = tickets.read(blocker.id)
    assert again.blocking == []
    assert again.updated > blocker.updated


def test_archive_and_unarchive(store, make_ticket, tickets):
    from peas_core.search import ListFilter

    ticket = make_ticket("Old news", status="completed")

    assert tickets.archive(ticket.id) == [ticket.id]
    assert (store.root / "archive" / f"{ticket.id}.md").exists()
    assert not (store.root / f"{ticket.id}.md").exists()
    assert tickets.list().records == []
    assert [t.id for t in tickets.list(ListFilter(archived=True)).records] == [ticket.id]
    assert tickets.read(ticket.id).title == "Old news"

    tickets.unarchive(ticket.id)
    assert (store.root / f"{ticket.id}.md").exists()
    assert [t.id for t in tickets.list().records] == [ticket.id]


def test_archive_twice_and_unarchive_active(make_ticket, tickets):
    from peas_core.exceptions import ValidationError

    ticket = make_ticket("Old news")
    tickets.archive(ticket.id)

    with pytest.raises(ValidationError, match="already archived"):
        tickets.archive(ticket.id)

    tickets.unarchive(ticket.id)
    with pytest.raises(ValidationError, match="not archived"):
        tickets.unarchive(ticket.id)


def test_archive_cascade(store, make_ticket, tickets):
    from peas_core.exceptions import OrphanError

    epic = make_ticket("Epic")
    story = make_ticket("Story", parent=epic.id)
    task = make_ticket("Task", parent=story.id)

    with pytest.raises(OrphanError, match="active children"):
        tickets.archive(epic.id)

    archived = tickets.archive(epic.id, cascade=True)

    assert archived == [epic.id, story.id, task.id]
    assert sorted(p.stem for p in (store.root / "archive").glob("*.md")) == sorted(archived)


def test_archived_ticket_still_counts_for_ids(seq_store):
    from peas_core.models import Ticket

    repo = seq_store.tickets
    first = repo.create(Ticket(title="One"))
    repo.archive(first)

    assert repo.create(Ticket(title="Two")) == "peas-00002"


def test_sequential_ids_across_reopen(seq_store):
    """Ids keep counting when the store is closed and opened again."""
    from peas_core.models import Ticket
    from peas_core.store import open_store

    ids = [seq_store.tickets.create(Ticket(title=f"T{n}")) for n in range(2)]
    reopened = open_store(seq_store.root)
    ids += [reopened.tickets.create(Ticket(title=f"T{n}")) for n in range(2, 4)]

    assert ids == ["peas-00001", "peas-00002", "peas-00003", "peas-00004"]


def test_sequential_ids_skip_hand_written_files(seq_store):
    from peas_core.models import Ticket

    (seq_store.root / "peas-00007.md").write_text(
        MANUAL_YAML.replace("peas-abc12", "peas-00007")
    )

    assert seq_store.tickets.create(Ticket(title="Next")) == "peas-00008"


def test_rename_rewrites_references_and_assets(store, make_ticket, tickets):
    parent = make_ticket("Parent")
    child = make_ticket("Child", parent=parent.id)
    blocker = make_ticket("Blocker", blocking=[parent.id])
    asset = store.assets.asset_path(parent.id, "mockup.pdf")
    asset.parent.mkdir(parents=True)
    asset.write_bytes(b"pdf")

    rewritten, moved = tickets.rename(parent.id, "peas-newid")

    assert sorted(rewritten) == sorted([child.id, blocker.id])
    assert moved
    assert tickets.read("peas-newid").title == "Parent"
    assert not tickets.exists(parent.id)
    assert tickets.read(child.id).parent == "peas-newid"
    assert tickets.read(blocker.id).blocking == ["peas-newid"]
    assert store.assets.list_assets("peas-newid") == ["mockup.pdf"]


def test_rename_to_existing_id_fails(make_ticket, tickets):
    from peas_core.exceptions import ValidationError

    a = make_ticket("A")
    b = make_ticket("B")

    with pytest.raises(ValidationError, match="already exists"):
        tickets.rename(a.id, b.id)


def test_rename_checks_asset_target_before_writing(store, make_ticket, tickets):
    from peas_core.exceptions import StoreIOError

    parent = make_ticket("Parent")
    child = make_ticket("Child", parent=parent.id)
    store.assets.asset_path(parent.id, "log.txt").parent.mkdir(parents=True)
    store.assets.asset_dir("peas-zzzzz").mkdir(parents=True)
    files_before = sorted(p.name for p in store.root.glob("*.md"))

    with pytest.raises(StoreIOError, match="already exists"):
        tickets.rename(parent.id, "peas-zzzzz")

    assert sorted(p.name for p in store.root.glob("*.md")) == files_before
    assert tickets.read(child.id).parent == parent.id
    assert len(store.undo) == 2


def test_rename_failing_partway_is_undoable(store, make_ticket, tickets, monkeypatch):
    from peas_core.exceptions import StoreIOError

    parent = make_ticket("Parent")
    child = make_ticket("Child", parent=parent.id)
    store.assets.asset_path(parent.id, "log.txt").parent.mkdir(parents=True)

    def broken_move(old_id, new_id):
        raise StoreIOError("assets unavailable")

    monkeypatch.setattr(tickets.assets, "move_assets", broken_move)

    with pytest.raises(StoreIOError, match="assets unavailable"):
        tickets.rename(parent.id, "peas-zzzzz")

    # the cache reflects what landed on disk
    assert tickets.read(child.id).parent == "peas-zzzzz"
    assert not tickets.exists(parent.id)
    assert store.undo.descriptions()[0] == f"renamed {parent.id} -> peas-zzzzz (incomplete)"

    store.undo.undo()

    assert tickets.read(parent.id).title == "Parent"
    assert tickets.read(child.id).parent == parent.id
    assert not tickets.exists("peas-zzzzz")


def test_rename_publishes_new_file_before_removing_old(store, make_ticket, tickets, monkeypatch):
    """If the old file cannot be removed, the new one already carries the new id."""
    from peas_core.exceptions import StoreIOError

    ticket = make_ticket("Moving")
    old_path = store.root / f"{ticket.id}.md"
    before = old_path.read_text()

    def broken_remove(path):
        raise StoreIOError(f"Cannot remove {path.name}")

    monkeypatch.setattr(tickets, "_remove", broken_remove)

    with pytest.raises(StoreIOError):
        tickets.rename(ticket.id, "peas-zzzzz")

    monkeypatch.undo()
    assert 'id = "peas-zzzzz"' in (store.root / "peas-zzzzz.md").read_text()
    assert old_path.read_text() == before

    store.undo.undo()

    assert not (store.root / "peas-zzzzz.md").exists()
    assert old_path.read_text() == before


def test_delete_failing_partway_is_undoable(store, make_ticket, tickets, monkeypatch):
    from peas_core.exceptions import StoreIOError

    target = make_ticket("Target")
    blocker = make_ticket("Blocker", blocking=[target.id])

    def broken_remove(path):
        raise StoreIOError(f"Cannot remove {path.name}")

    monkeypatch.setattr(tickets, "_remove", broken_remove)

    with pytest.raises(StoreIOError):
        tickets.delete(target.id)

    monkeypatch.undo()
    assert tickets.read(blocker.id).blocking == []
    assert tickets.exists(target.id)
    assert store.undo.descriptions()[0] == f"deleted {target.id} (incomplete)"

    store.undo.undo()

    assert tickets.read(blocker.id).blocking == [target.id]


def test_delete_removes_assets_after_commit(store, make_ticket, tickets, monkeypatch):
    from peas_core.exceptions import StoreIOError

    ticket = make_ticket("Doomed")

    def broken_remove_assets(record_id):
        raise StoreIOError(f"Cannot remove assets for {record_id}")

    monkeypatch.setattr(tickets.assets, "remove_assets", broken_remove_assets)

    with pytest.raises(StoreIOError, match="Cannot remove assets"):
        tickets.delete(ticket.id)

    assert not tickets.exists(ticket.id)
    assert store.undo.descriptions()[0] == f"deleted {ticket.id}"

    store.undo.undo()

    assert tickets.read(ticket.id).title == "Doomed"


def test_unparseable_ticket_gives_typed_errors(store, tickets):
    from peas_core.exceptions import ParseError

    path = store.root / "peas-bad01.md"
    path.write_text("+++\nid = \n+++\n")

    with pytest.raises(ParseError):
        tickets.archive("peas-bad01")
    with pytest.raises(ParseError):
        tickets.rename("peas-bad01", "peas-good1")

    assert path.exists()
    assert not (store.root / "archive" / "peas-bad01.md").exists()

    tickets.delete("peas-bad01")

    assert not path.exists()


def test_migrate_format(store, make_ticket, tickets):
    from peas_core.frontmatter import FrontmatterFormat

    ticket = make_ticket("First", body="Body")
    path = store.root / f"{ticket.id}.md"

    assert tickets.migrate_format(ticket.id, FrontmatterFormat.FLAT)
    assert path.read_text().startswith(f"id: {ticket.id}\n")
    assert not tickets.migrate_format(ticket.id, FrontmatterFormat.FLAT)
    assert tickets.read(ticket.id).body == "Body"


def test_scan_timeout(store, make_ticket, tickets):
    from peas_core.exceptions import StoreIOError

    make_ticket("First")
    tickets.invalidate()
    store.config.scan_timeout = -1.0

    with pytest.raises(StoreIOError, match="took longer"):
        tickets.list()
