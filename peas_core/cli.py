"""CLI module for peas - typer app and all commands."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from typing_extensions import Annotated

from peas_core.constants import VALID_TYPES
from peas_core.doctor import fix_counter, run_checks
from peas_core.exceptions import ConflictError, NotFoundError, PeasError
from peas_core.log import setup_logging
from peas_core.models import Note, Ticket
from peas_core.reorganization import migrate_all, rename_ticket
from peas_core.search import ListFilter
from peas_core.store import Store, init_store, open_store

__all__ = ["app", "main"]

app = typer.Typer(help="peas - flat-file tickets and notes")
memory_app = typer.Typer(help="Knowledge notes")
app.add_typer(memory_app, name="memory")

_state = {"root": None}

STATUS_MARKERS = {
    "draft": "·",
    "todo": "○",
    "in-progress": "◐",
    "completed": "●",
    "scrapped": "⊘",
}


@app.callback()
def main_options(
    root: Annotated[Optional[Path], typer.Option(help="Store root (default: nearest .peas/)")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
    log_file: Annotated[Optional[Path], typer.Option(help="Also log to this file")] = None,
):
    """peas - flat-file tickets and notes."""
    _state["root"] = root
    setup_logging(verbose=verbose, log_file=log_file)


@contextmanager
def _errors() -> Iterator[None]:
    """Turn store errors into a message and exit code 1."""
    try:
        yield
    except ConflictError as e:
        print(f"Error: {e}")
        print("Hint: reload and retry")
        raise typer.Exit(code=1)
    except PeasError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)


def _open() -> Store:
    return open_store(_state["root"], persistent_undo=True)


def _line(ticket: Ticket) -> str:
    marker = STATUS_MARKERS.get(ticket.status, "?")
    return f"{marker} {ticket.id} [{ticket.priority}] ({ticket.type}) {ticket.title}"


@app.command()
def init(
    prefix: Annotated[Optional[str], typer.Option(help="Id prefix")] = None,
    id_length: Annotated[Optional[int], typer.Option(help="Id suffix length")] = None,
    sequential: Annotated[bool, typer.Option(help="Sequential numeric ids")] = False,
    frontmatter: Annotated[str, typer.Option(help="Header format: toml, yaml or flat")] = "toml",
):
    """Initialize a store in the current directory."""
    kwargs = {"id_mode": "sequential" if sequential else "random", "frontmatter": frontmatter}
    if prefix is not None:
        kwargs["prefix"] = prefix
    if id_length is not None:
        kwargs["id_length"] = id_length

    with _errors():
        store = init_store(root=_state["root"], **kwargs)

    print(f"Initialized peas at {store.root}")
    print(f"Prefix: {store.config.prefix}  id mode: {store.config.id_mode}")


@app.command()
def create(
    title: Annotated[str, typer.Argument(help="Ticket title")],
    type_: Annotated[Optional[str], typer.Option("--type", "-t", help=f"One of {', '.join(VALID_TYPES)}")] = None,
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Initial status")] = None,
    priority: Annotated[str, typer.Option("--priority", "-p", help="critical/high/normal/low/deferred or p0-p4")] = "normal",
    tag: Annotated[Optional[List[str]], typer.Option(help="Tag (repeatable)")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Parent ticket id")] = None,
    blocks: Annotated[Optional[List[str]], typer.Option(help="Ticket this one blocks (repeatable)")] = None,
    body: Annotated[str, typer.Option(help="Ticket body")] = "",
):
    """Create a new ticket."""
    with _errors():
        store = _open()
        ticket = Ticket(
            title=title,
            type=type_ or store.config.default_type,
            status=status or store.config.default_status,
            priority=priority,
            tags=list(tag or []),
            parent=store.tickets.resolve_id(parent) if parent else None,
            blocking=[store.tickets.resolve_id(b) for b in blocks or []],
            body=body,
        )
        ticket_id = store.tickets.create(ticket)

    print(f"Created {ticket_id}: {title}")


@app.command(name="list")
def list_cmd(
    type_: Annotated[Optional[str], typer.Option("--type", "-t", help="Filter by type")] = None,
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="Filter by status")] = None,
    priority: Annotated[Optional[str], typer.Option("--priority", "-p", help="Filter by priority")] = None,
    tag: Annotated[Optional[str], typer.Option(help="Filter by tag")] = None,
    parent: Annotated[Optional[str], typer.Option(help="Only children of this ticket")] = None,
    search: Annotated[Optional[str], typer.Option("--search", "-q", help="Search query (title:, tag:, regex:)")] = None,
    open_only: Annotated[bool, typer.Option("--open", help="Only draft/todo/in-progress")] = False,
    archived: Annotated[bool, typer.Option(help="List archived tickets instead")] = False,
    all_: Annotated[bool, typer.Option("--all", help="Active and archived")] = False,
    sort: Annotated[str, typer.Option(help="created, updated, priority, id, title, status, type")] = "created",
    reverse: Annotated[bool, typer.Option(help="Reverse the order")] = False,
):
    """List tickets."""
    with _errors():
        store = _open()
        flt = ListFilter(
            type=type_,
            status=status,
            priority=priority,
            tag=tag,
            parent=store.tickets.resolve_id(parent) if parent else None,
            query=search,
            open_only=open_only,
            archived=None if all_ else archived,
            sort_by=sort,
            reverse=reverse,
        )
        result = store.tickets.list(flt)

    for record_id, error in sorted(result.errors.items()):
        print(f"! {record_id}: {error}")

    if not result.records:
        print("No tickets found")
        return

    for ticket in result.records:
        print(_line(ticket))


@app.command()
def show(ticket_id: Annotated[str, typer.Argument(help="Ticket id or suffix")]):
    """Show ticket details."""
    with _errors():
        store = _open()
        ticket = store.tickets.read(ticket_id)
        children = store.tickets.children_of(ticket.id)
        blocked_by = store.tickets.blocked_by_of(ticket.id)
        assets = store.assets.list_assets(ticket.id)

    print(f"ID:          {ticket.id}")
    print(f"Title:       {ticket.title}")
    print(f"Type:        {ticket.type}")
    print(f"Status:      {ticket.status}")
    print(f"Priority:    {ticket.priority}")
    if ticket.tags:
        print(f"Tags:        {', '.join(ticket.tags)}")
    if ticket.parent:
        print(f"Parent:      {ticket.parent}")
    print(f"Created:     {ticket.created.isoformat()}")
    print(f"Updated:     {ticket.updated.isoformat()}")

    if ticket.blocking:
        print("\nBlocks:")
        for blocked in ticket.blocking:
            print(f"  {blocked}")
    if blocked_by:
        print("\nBlocked by:")
        for blocker in blocked_by:
            print(f"  {_line(blocker)}")
    if children:
        print("\nChildren:")
        for child in children:
            print(f"  {_line(child)}")
    if assets:
        print("\nAssets:")
        for name in assets:
            print(f"  {name}")
    if ticket.body:
        print(f"\n{ticket.body}")


@app.command()
def update(
    ticket_id: Annotated[str, typer.Argument(help="Ticket id or suffix")],
    title: Annotated[Optional[str], typer.Option(help="New title")] = None,
    type_: Annotated[Optional[str], typer.Option("--type", "-t", help="New type")] = None,
    status: Annotated[Optional[str], typer.Option("--status", "-s", help="New status")] = None,
    priority: Annotated[Optional[str], typer.Option("--priority", "-p", help="New priority")] = None,
    parent: Annotated[Optional[str], typer.Option(help="New parent id")] = None,
    no_parent: Annotated[bool, typer.Option("--no-parent", help="Clear the parent")] = False,
    add_tag: Annotated[Optional[List[str]], typer.Option(help="Add a tag (repeatable)")] = None,
    remove_tag: Annotated[Optional[List[str]], typer.Option(help="Remove a tag (repeatable)")] = None,
    block: Annotated[Optional[List[str]], typer.Option(help="Start blocking a ticket (repeatable)")] = None,
    unblock: Annotated[Optional[List[str]], typer.Option(help="Stop blocking a ticket (repeatable)")] = None,
    body: Annotated[Optional[str], typer.Option(help="Replace the body")] = None,
):
    """Update a ticket."""
    with _errors():
        store = _open()
        repo = store.tickets
        ticket = repo.read(ticket_id)

        if title is not None:
            ticket.title = title
        if type_ is not None:
            ticket.type = type_
        if status is not None:
            ticket.status = status
        if priority is not None:
            ticket.priority = priority
        if no_parent:
            ticket.parent = None
        elif parent is not None:
            ticket.parent = repo.resolve_id(parent)
        for name in add_tag or []:
            if name not in ticket.tags:
                ticket.tags.append(name)
        ticket.tags = [t for t in ticket.tags if t not in (remove_tag or [])]
        for target in block or []:
            target = repo.resolve_id(target)
            if target not in ticket.blocking:
                ticket.blocking.append(target)
        removed = {repo.resolve_id(t) for t in unblock or []}
        ticket.blocking = [b for b in ticket.blocking if b not in removed]
        if body is not None:
            ticket.body = body

        repo.update(ticket)

    print(f"Updated {ticket.id}")


@app.command()
def archive(
    ticket_id: Annotated[str, typer.Argument(help="Ticket id or suffix")],
    cascade: Annotated[bool, typer.Option(help="Archive descendants too")] = False,
):
    """Move a ticket into the archive."""
    with _errors():
        archived = _open().tickets.archive(ticket_id, cascade=cascade)

    for record_id in archived:
        print(f"Archived {record_id}")


@app.command()
def unarchive(ticket_id: Annotated[str, typer.Argument(help="Ticket id or suffix")]):
    """Restore an archived ticket."""
    with _errors():
        repo = _open().tickets
        record_id = repo.resolve_id(ticket_id)
        repo.unarchive(record_id)

    print(f"Unarchived {record_id}")


@app.command()
def delete(
    ticket_id: Annotated[str, typer.Argument(help="Ticket id or suffix")],
    cascade: Annotated[bool, typer.Option(help="Detach children instead of refusing")] = False,
    keep_assets: Annotated[bool, typer.Option(help="Leave the asset directory in place")] = False,
):
    """Delete a ticket permanently (undo restores the file)."""
    with _errors():
        repo = _open().tickets
        record_id = repo.resolve_id(ticket_id)
        rewritten = repo.delete(record_id, cascade=cascade, keep_assets=keep_assets)

    print(f"Deleted {record_id}")
    if rewritten:
        print(f"  Updated references in {', '.join(rewritten)}")


@app.command()
def mv(
    old_id: Annotated[str, typer.Argument(help="Current id or suffix")],
    new_id: Annotated[str, typer.Argument(help="New id or suffix")],
    force: Annotated[bool, typer.Option(help="Allow an id that does not match the configured shape")] = False,
):
    """Rename a ticket and rewrite references to it."""
    with _errors():
        result = rename_ticket(_open().tickets, old_id, new_id, force=force)

    for warning in result.warnings:
        print(f"Warning: {warning}")
    print(f"Renamed {result.old_id} -> {result.new_id}")
    if result.rewritten:
        print(f"  Updated references in {', '.join(result.rewritten)}")
    if result.assets_moved:
        print("  Moved assets")


@app.command()
def undo(
    list_: Annotated[bool, typer.Option("--list", help="Show the undo history instead")] = False,
):
    """Undo the last operation."""
    with _errors():
        stack = _open().undo
        if list_:
            descriptions = stack.descriptions()
            if not descriptions:
                print("Nothing to undo")
            for number, description in enumerate(descriptions, 1):
                print(f"{number}. {description}")
            return
        description = stack.undo()

    print(f"Undone: {description}")


@app.command()
def doctor(fix: Annotated[bool, typer.Option(help="Repair the sequential counter")] = False):
    """Check the store for problems."""
    with _errors():
        store = _open()
        report = run_checks(store)
        fixed = fix_counter(store) if fix else None

    print(f"Checked {report.checked} ticket(s)")
    for finding in report.findings:
        marker = "✗" if finding.level == "error" else "!"
        print(f"  {marker} [{finding.check}] {finding.message}")
    if fixed is not None:
        print(f"  Counter reset to {fixed}")
    if not report.findings:
        print("  No problems found")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def migrate(fmt: Annotated[str, typer.Argument(help="toml, yaml or flat")]):
    """Rewrite every ticket with another header format."""
    with _errors():
        try:
            migrated = migrate_all(_open().tickets, fmt)
        except ValueError:
            print(f"Error: unknown format {fmt}")
            raise typer.Exit(code=1)

    print(f"Migrated {len(migrated)} ticket(s) to {fmt}")


@memory_app.command("save")
def memory_save(
    key: Annotated[str, typer.Argument(help="Note key")],
    content: Annotated[str, typer.Argument(help="Note body")],
    tag: Annotated[Optional[List[str]], typer.Option(help="Tag (repeatable)")] = None,
):
    """Create or replace a note."""
    with _errors():
        notes = _open().notes
        try:
            note = notes.read(key)
        except NotFoundError:
            notes.create(Note(key=key, tags=list(tag or []), body=content))
            print(f"Saved {key}")
            return
        note.body = content
        if tag:
            note.tags = list(tag)
        notes.update(note)

    print(f"Updated {key}")


@memory_app.command("show")
def memory_show(key: Annotated[str, typer.Argument(help="Note key")]):
    """Show a note."""
    with _errors():
        note = _open().notes.read(key)

    print(f"Key:     {note.key}")
    if note.tags:
        print(f"Tags:    {', '.join(note.tags)}")
    print(f"Updated: {note.updated.isoformat()}")
    if note.body:
        print(f"\n{note.body}")


@memory_app.command("list")
def memory_list(
    tag: Annotated[Optional[str], typer.Option(help="Filter by tag")] = None,
    search: Annotated[Optional[str], typer.Option("--search", "-q", help="Search query")] = None,
):
    """List notes, newest first."""
    with _errors():
        notes = _open().notes.list(tag=tag, query=search)

    if not notes:
        print("No notes found")
        return
    for note in notes:
        tags = f" [{', '.join(note.tags)}]" if note.tags else ""
        print(f"{note.key}{tags}")


@memory_app.command("delete")
def memory_delete(key: Annotated[str, typer.Argument(help="Note key")]):
    """Delete a note."""
    with _errors():
        _open().notes.delete(key)

    print(f"Deleted {key}")


def main():
    """Main CLI entry point."""
    app()
