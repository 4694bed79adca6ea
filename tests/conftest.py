"""Shared pytest fixtures for peas tests."""

import pytest


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep tests away from any real store or log configuration."""
    monkeypatch.delenv("PEAS_ROOT", raising=False)
    monkeypatch.delenv("PEAS_LOG", raising=False)


@pytest.fixture
def store(tmp_path):
    """A freshly initialized store with random ids and TOML headers."""
    from peas_core.store import init_store

    return init_store(project_dir=tmp_path)


@pytest.fixture
def seq_store(tmp_path):
    """A freshly initialized store with sequential ids."""
    from peas_core.store import init_store

    return init_store(project_dir=tmp_path, id_mode="sequential")


@pytest.fixture
def tickets(store):
    return store.tickets


@pytest.fixture
def make_ticket(tickets):
    """Create a ticket and return the stored copy."""
    from peas_core.models import Ticket

    def _make(title="Task", **fields):
        ticket_id = tickets.create(Ticket(title=title, **fields))
        return tickets.read(ticket_id)

    return _make


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A project directory that is the current working directory."""
    project_dir = tmp_path / "myapp"
    project_dir.mkdir()
    monkeypatch.chdir(project_dir)
    return project_dir
