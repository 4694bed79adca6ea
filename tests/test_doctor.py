"""Tests for store health checks."""

TEMPLATE = """+++
id = "{id}"
title = "{id}"
type = "task"
status = "todo"
{extra}+++
"""


def _write(store, record_id, extra=""):
    (store.root / f"{record_id}.md").write_text(TEMPLATE.format(id=record_id, extra=extra))


def test_clean_store(store, make_ticket):
    from peas_core.doctor import run_checks

    parent = make_ticket("Parent")
    make_ticket("Child", parent=parent.id)

    report = run_checks(store)

    assert report.checked == 2
    assert report.findings == []
    assert report.ok


def test_reports_broken_files(store):
    from peas_core.doctor import run_checks

    (store.root / "peas-bad00.md").write_text("garbage\n")
    (store.root / "memory" / "note.md").write_text("+++\nkey = \n+++\n")

    report = run_checks(store)

    assert not report.ok
    assert sorted(f.record_id for f in report.errors) == ["note", "peas-bad00"]
    assert all(f.check == "format" for f in report.errors)


def test_reports_dangling_references(store):
    from peas_core.doctor import run_checks

    _write(store, "peas-aaaaa", 'parent = "peas-zzzzz"\nblocking = ["peas-yyyyy"]\n')

    messages = [f.message for f in run_checks(store).errors]

    assert "peas-aaaaa references missing parent peas-zzzzz" in messages
    assert "peas-aaaaa blocks missing ticket peas-yyyyy" in messages


def test_reports_cycles(store):
    from peas_core.doctor import run_checks

    _write(store, "peas-aaaaa", 'parent = "peas-bbbbb"\nblocking = ["peas-bbbbb"]\n')
    _write(store, "peas-bbbbb", 'parent = "peas-aaaaa"\nblocking = ["peas-aaaaa"]\n')

    cycles = [f for f in run_checks(store).findings if f.check == "cycles"]

    assert len(cycles) == 2
    assert cycles[0].message.startswith("parent cycle: peas-aaaaa -> peas-bbbbb -> peas-aaaaa")
    assert cycles[1].message.startswith("blocking cycle:")


def test_reports_self_references(store):
    from peas_core.doctor import run_checks

    _write(store, "peas-aaaaa", 'parent = "peas-aaaaa"\nblocking = ["peas-aaaaa"]\n')

    messages = [f.message for f in run_checks(store).errors]

    assert "peas-aaaaa is its own parent" in messages
    assert "peas-aaaaa blocks itself" in messages


def test_warns_about_id_shape(store):
    from peas_core.doctor import run_checks

    _write(store, "peas-TOOLONG")

    report = run_checks(store)

    assert report.ok
    assert [f.check for f in report.warnings] == ["ids"]


def test_counter_behind_and_fix(seq_store):
    from peas_core.doctor import fix_counter, run_checks
    from peas_core.models import Ticket

    _write(seq_store, "peas-00009")

    report = run_checks(seq_store)
    assert [f.check for f in report.warnings] == ["counter"]

    assert fix_counter(seq_store) == 9
    assert fix_counter(seq_store) is None
    assert seq_store.tickets.counter.current() == 9
    assert seq_store.tickets.create(Ticket(title="Next")) == "peas-00010"
