"""Store health checks.

``run_checks`` never modifies anything. ``fix_counter`` repairs the one
problem that is safe to fix mechanically: a sequential counter that fell
behind the highest id in use (for example after files were copied in).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from peas_core.ids import id_suffix, validate_id
from peas_core.models import Ticket
from peas_core.store import Store

__all__ = [
    "Finding",
    "DoctorReport",
    "run_checks",
    "fix_counter",
    "highest_sequential_value",
]

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"


@dataclass
class Finding:
    level: str
    check: str
    message: str
    record_id: Optional[str] = None


@dataclass
class DoctorReport:
    checked: int = 0
    findings: List[Finding] = field(default_factory=list)

    def add(self, level: str, check: str, message: str, record_id: Optional[str] = None) -> None:
        self.findings.append(Finding(level, check, message, record_id))

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.level == ERROR]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.level == WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors


def _parent_cycles(records: Dict[str, Ticket]) -> List[List[str]]:
    cycles: List[List[str]] = []
    reported: Set[str] = set()
    for start in sorted(records):
        path: List[str] = []
        on_path: Set[str] = set()
        current: Optional[str] = start
        while current in records and current not in on_path and current not in reported:
            path.append(current)
            on_path.add(current)
            current = records[current].parent
        if current in on_path:
            cycle = path[path.index(current):]
            cycles.append(cycle)
            reported.update(cycle)
        reported.update(path)
    return cycles


def _blocking_cycles(records: Dict[str, Ticket]) -> List[List[str]]:
    """Cycles in the blocking graph, found by colouring DFS."""
    white, grey, black = 0, 1, 2
    colour = {record_id: white for record_id in records}
    cycles: List[List[str]] = []

    for root in sorted(records):
        if colour[root] != white:
            continue
        stack = [(root, iter(records[root].blocking))]
        path = [root]
        colour[root] = grey
        while stack:
            node, edges = stack[-1]
            advanced = False
            for target in edges:
                if target not in records:
                    continue
                if colour[target] == grey:
                    cycles.append(path[path.index(target):])
                elif colour[target] == white:
                    colour[target] = grey
                    path.append(target)
                    stack.append((target, iter(records[target].blocking)))
                    advanced = True
                    break
            if not advanced:
                colour[node] = black
                path.pop()
                stack.pop()
    return cycles


def highest_sequential_value(store: Store) -> int:
    """Largest numeric id suffix in the store (0 if none)."""
    prefix = store.config.prefix
    values = [
        int(suffix)
        for suffix in (id_suffix(record_id, prefix) for record_id in store.tickets.all_ids())
        if suffix.isdigit()
    ]
    return max(values, default=0)


def run_checks(store: Store) -> DoctorReport:
    """Inspect a store and report problems."""
    report = DoctorReport()
    store.refresh()
    tickets = store.tickets
    records = {key: entry.record for key, entry in tickets.cache.entries().items()}
    report.checked = len(records)

    for key, broken in sorted(tickets.cache.errors().items()):
        report.add(ERROR, "format", str(broken.error), key)
    for key, error in sorted(store.notes.errors().items()):
        report.add(ERROR, "format", str(error), key)

    for record_id, ticket in sorted(records.items()):
        if ticket.parent == record_id:
            report.add(ERROR, "integrity", f"{record_id} is its own parent", record_id)
        elif ticket.parent and ticket.parent not in records:
            report.add(ERROR, "integrity", f"{record_id} references missing parent {ticket.parent}", record_id)
        for blocked in ticket.blocking:
            if blocked == record_id:
                report.add(ERROR, "integrity", f"{record_id} blocks itself", record_id)
            elif blocked not in records:
                report.add(ERROR, "integrity", f"{record_id} blocks missing ticket {blocked}", record_id)
        if not validate_id(record_id, store.config):
            report.add(WARNING, "ids", f"{record_id} does not match the configured id shape", record_id)

    for cycle in _parent_cycles(records):
        if len(cycle) > 1:
            report.add(ERROR, "cycles", "parent cycle: " + " -> ".join(cycle + cycle[:1]), cycle[0])
    for cycle in _blocking_cycles(records):
        if len(cycle) > 1:
            report.add(ERROR, "cycles", "blocking cycle: " + " -> ".join(cycle + cycle[:1]), cycle[0])

    if store.config.id_mode == "sequential":
        highest = highest_sequential_value(store)
        counter = tickets.counter.current()
        if counter < highest:
            report.add(
                WARNING,
                "counter",
                f"sequential counter is {counter} but the highest id in use is {highest}",
            )

    logger.debug("doctor: %d finding(s) over %d ticket(s)", len(report.findings), report.checked)
    return report


def fix_counter(store: Store) -> Optional[int]:
    """Advance the sequential counter to the highest id in use.

    Returns:
        The new counter value, or None if nothing needed fixing
    """
    highest = highest_sequential_value(store)
    if store.tickets.counter.current() >= highest:
        return None
    store.tickets.counter.reset(highest)
    logger.info("sequential counter reset to %d", highest)
    return highest
