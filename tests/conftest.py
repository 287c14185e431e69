"""Shared test fixtures for the KanbanAI tests."""

import itertools
import sys
from pathlib import Path

import pytest

# Make the root-level modules (kanban_server, kanban_chat) importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from kanbanai.store import TaskStore


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "kanban.db")


@pytest.fixture
def store(db_path):
    """Store with predictable ids: task-1, task-2, ..."""
    counter = itertools.count(1)
    return TaskStore(db_path, id_factory=lambda: f"task-{next(counter)}")
