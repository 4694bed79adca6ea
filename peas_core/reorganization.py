"""Reorganization for peas - rename, reparent, blocking edits, format migration."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from peas_core.exceptions import ParseError, ValidationError
from peas_core.frontmatter import FrontmatterFormat
from peas_core.ids import id_suffix, validate_id
from peas_core.models import Ticket
from peas_core.repository import RecordRepository, TicketRepository

__all__ = [
    "RenameResult",
    "rename_ticket",
    "reparent",
    "add_blocking",
    "remove_blocking",
    "migrate_format",
    "migrate_all",
]

logger = logging.getLogger(__name__)


@dataclass
class RenameResult:
    old_id: str
    new_id: str
    rewritten: List[str] = field(default_factory=list)
    assets_moved: bool = False
    warnings: List[str] = field(default_factory=list)


def _shape_problems(suffix: str, repo: TicketRepository) -> List[str]:
    config = repo.config
    problems = []
    if len(suffix) != config.id_length:
        problems.append(
            f"Suffix length {len(suffix)} does not match configured id_length {config.id_length}"
        )
    if config.id_mode == "sequential" and not suffix.isdigit():
        problems.append(f"Suffix '{suffix}' contains non-digits but id_mode is 'sequential'")
    return problems


def rename_ticket(
    repo: TicketRepository,
    old_id: str,
    new_id: str,
    force: bool = False,
) -> RenameResult:
    """Rename a ticket, rewriting every reference to it.

    Both ids may be given as a bare suffix or a full id.

    Args:
        repo: Ticket repository
        old_id: Current id
        new_id: Target id
        force: Accept a target that does not match the configured id shape

    Returns:
        RenameResult describing what changed; ``warnings`` lists shape
        problems that ``force`` let through

    Raises:
        NotFoundError: If old_id does not exist
        ValidationError: If new_id is taken, unsafe, or has the wrong shape
            without force
    """
    prefix = repo.config.prefix
    old_full = f"{prefix}{id_suffix(old_id.strip(), prefix)}"
    new_suffix = id_suffix(new_id.strip(), prefix)
    new_full = f"{prefix}{new_suffix}"

    if not validate_id(new_full, repo.config, force=force):
        problems = _shape_problems(new_suffix, repo) or [f"Invalid id: {new_full}"]
        raise ValidationError("; ".join(problems) + ". Use force to override.")

    warnings = _shape_problems(new_suffix, repo) if force else []
    if repo.config.id_mode == "random" and new_suffix.isdigit():
        warnings.append(f"Suffix '{new_suffix}' is all digits (unusual for random mode)")
    for warning in warnings:
        logger.warning(warning)

    rewritten, assets_moved = repo.rename(old_full, new_full)
    return RenameResult(old_full, new_full, rewritten, assets_moved, warnings)


def reparent(repo: TicketRepository, record_id: str, new_parent: Optional[str]) -> Ticket:
    """Change the parent of a ticket (None to clear it).

    Raises:
        SelfRefError, OrphanError, CycleError: If the new parent is invalid
    """
    ticket = repo.read(record_id)
    ticket.parent = repo.resolve_id(new_parent) if new_parent else None
    return repo.update(ticket)


def add_blocking(repo: TicketRepository, record_id: str, target_id: str) -> Ticket:
    """Record that record_id blocks target_id.

    Raises:
        SelfRefError, OrphanError, CycleError: If the edge is invalid
    """
    ticket = repo.read(record_id)
    target = repo.resolve_id(target_id)
    if target not in ticket.blocking:
        ticket.blocking.append(target)
    return repo.update(ticket)


def remove_blocking(repo: TicketRepository, record_id: str, target_id: str) -> Ticket:
    ticket = repo.read(record_id)
    target = repo.resolve_id(target_id)
    if target not in ticket.blocking:
        raise ValidationError(f"{ticket.id} does not block {target}")
    ticket.blocking = [b for b in ticket.blocking if b != target]
    return repo.update(ticket)


def migrate_format(
    repo: RecordRepository,
    key: str,
    fmt: Union[FrontmatterFormat, str],
) -> bool:
    """Rewrite one record with another header syntax.

    Returns:
        True if the file changed
    """
    return repo.migrate_format(key, FrontmatterFormat(fmt))


def migrate_all(repo: TicketRepository, fmt: Union[FrontmatterFormat, str]) -> List[str]:
    """Rewrite every parseable ticket (active and archived) in fmt.

    Returns:
        Ids that were rewritten
    """
    target = FrontmatterFormat(fmt)
    migrated = []
    for record_id in repo.all_ids():
        try:
            if repo.migrate_format(record_id, target):
                migrated.append(record_id)
        except ParseError as e:
            logger.warning("skipping %s: %s", record_id, e)
    return migrated
