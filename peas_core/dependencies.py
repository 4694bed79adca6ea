"""Relationships between tickets: validation and derivation.

Everything here is a pure function over a snapshot mapping of id -> Ticket.
Nothing reads or writes files; the repository materializes the snapshot and
calls in before committing a relationship-affecting write.
"""

from typing import Iterable, List, Mapping, Optional, Set

from peas_core.exceptions import CycleError, OrphanError, SelfRefError
from peas_core.models import Ticket

__all__ = [
    "validate_parent",
    "validate_blocking",
    "detect_cycle",
    "get_children",
    "get_descendants",
    "get_ancestors",
    "get_blockers",
    "is_blocked",
    "has_open_children",
]


# Outcomes of walking up a parent chain
_NO_CYCLE = "none"
_NEW_CYCLE = "new"
_EXISTING_LOOP = "existing"


def _walk_parents(issue_id: str, new_parent_id: str, all_records: Mapping[str, Ticket]) -> str:
    current: Optional[str] = new_parent_id
    visited: Set[str] = set()

    # depth is bounded by the number of records
    for _ in range(len(all_records) + 1):
        if current is None:
            return _NO_CYCLE
        if current == issue_id:
            return _NEW_CYCLE
        if current in visited:
            return _EXISTING_LOOP
        visited.add(current)

        record = all_records.get(current)
        if record is None:
            return _NO_CYCLE
        current = record.parent

    return _EXISTING_LOOP


def detect_cycle(issue_id: str, new_parent_id: str, all_records: Mapping[str, Ticket]) -> bool:
    """Detect if reparenting would create a cycle.

    Walks up from new_parent_id following parent links. The walk stops on a
    record it has already seen. Such a loop is corrupt data that already
    exists above new_parent_id, not something the new edge creates, but the
    link is still refused: the ticket would hang below a cycle.

    Args:
        issue_id: Ticket to reparent
        new_parent_id: Proposed new parent
        all_records: Snapshot of every ticket

    Returns:
        True if the new link closes a cycle or sits below an existing one
    """
    return _walk_parents(issue_id, new_parent_id, all_records) != _NO_CYCLE


def validate_parent(
    candidate_id: str,
    proposed_parent: Optional[str],
    all_records: Mapping[str, Ticket],
) -> None:
    """Check a proposed parent link.

    Args:
        candidate_id: Ticket whose parent is being set
        proposed_parent: New parent id, or None to clear it
        all_records: Snapshot of every ticket

    Raises:
        SelfRefError: If the ticket would be its own parent
        OrphanError: If the parent does not exist
        CycleError: If the ticket would become its own ancestor, or the
            parent chain above proposed_parent already loops (corrupt data)
    """
    if proposed_parent is None:
        return
    if proposed_parent == candidate_id:
        raise SelfRefError(f"{candidate_id} cannot be its own parent")
    if proposed_parent not in all_records:
        raise OrphanError(f"Parent {proposed_parent} does not exist")

    outcome = _walk_parents(candidate_id, proposed_parent, all_records)
    if outcome == _NEW_CYCLE:
        raise CycleError(
            f"Cannot set parent of {candidate_id} to {proposed_parent}: would create a cycle"
        )
    if outcome == _EXISTING_LOOP:
        raise CycleError(
            f"Cannot set parent of {candidate_id} to {proposed_parent}: its parent chain "
            "already contains a cycle in the stored data (run doctor)"
        )


def _reaches(start: str, target: str, all_records: Mapping[str, Ticket]) -> bool:
    """Depth-first search along blocking edges from start looking for target."""
    stack = [start]
    visited: Set[str] = set()
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in visited:
            continue
        visited.add(current)
        record = all_records.get(current)
        if record is not None:
            stack.extend(record.blocking)
    return False


def validate_blocking(
    candidate_id: str,
    proposed_blocking: Iterable[str],
    all_records: Mapping[str, Ticket],
) -> None:
    """Check a proposed set of blocking edges candidate_id -> x.

    Raises:
        SelfRefError: If the ticket would block itself
        OrphanError: If a blocked ticket does not exist
        CycleError: If some x already (transitively) blocks candidate_id
    """
    targets = list(proposed_blocking)
    for target in targets:
        if target == candidate_id:
            raise SelfRefError(f"{candidate_id} cannot block itself")
    for target in targets:
        if target not in all_records:
            raise OrphanError(f"Blocked ticket {target} does not exist")
    for target in targets:
        if _reaches(target, candidate_id, all_records):
            raise CycleError(
                f"{candidate_id} cannot block {target}: {target} already blocks {candidate_id}"
            )


def get_children(parent_id: str, all_records: Mapping[str, Ticket]) -> List[Ticket]:
    """Direct children of a ticket, oldest first."""
    children = [r for r in all_records.values() if r.parent == parent_id]
    return sorted(children, key=lambda r: (r.created, r.id))


def get_descendants(parent_id: str, all_records: Mapping[str, Ticket]) -> List[Ticket]:
    """All tickets below parent_id in the tree, breadth first."""
    result: List[Ticket] = []
    seen = {parent_id}
    queue = [parent_id]
    while queue:
        current = queue.pop(0)
        for child in get_children(current, all_records):
            if child.id in seen:
                continue
            seen.add(child.id)
            result.append(child)
            queue.append(child.id)
    return result


def get_ancestors(record_id: str, all_records: Mapping[str, Ticket]) -> List[Ticket]:
    """Parent chain from the direct parent up to the root."""
    result: List[Ticket] = []
    seen = {record_id}
    record = all_records.get(record_id)
    while record is not None and record.parent and record.parent not in seen:
        seen.add(record.parent)
        record = all_records.get(record.parent)
        if record is not None:
            result.append(record)
    return result


def get_blockers(record_id: str, all_records: Mapping[str, Ticket]) -> List[Ticket]:
    """Tickets that list record_id in their blocking set (blocked-by)."""
    blockers = [r for r in all_records.values() if record_id in r.blocking]
    return sorted(blockers, key=lambda r: (r.created, r.id))


def is_blocked(record_id: str, all_records: Mapping[str, Ticket]) -> bool:
    """Check if a ticket is blocked by any open ticket."""
    return any(blocker.is_open() for blocker in get_blockers(record_id, all_records))


def has_open_children(parent_id: str, all_records: Mapping[str, Ticket]) -> bool:
    """Check if a ticket has any open children."""
    return any(child.is_open() for child in get_children(parent_id, all_records))
