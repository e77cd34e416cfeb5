"""Shared test fixtures for the taskboard test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- engine: the app's filter engine
- seed_data: a workspace with a member and an outsider, one board with
  typed columns, and four tasks with field values
"""

from datetime import datetime

import pytest

from taskboard import create_app
from taskboard.extensions import db as _db
from taskboard.models.board import Board, BoardColumn
from taskboard.models.task import Task, TaskFieldValue
from taskboard.models.user import User
from taskboard.models.workspace import Workspace, WorkspaceMember
from taskboard.services.engine import EXTENSION_KEY


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def engine(app):
    return app.extensions[EXTENSION_KEY]


def _column(board, name, column_type, position, options=None, **kwargs):
    column = BoardColumn(
        board_id=board.id,
        name=name,
        type=column_type,
        options=options or {},
        position=position,
        **kwargs,
    )
    _db.session.add(column)
    return column


def _value(task, column, value):
    _db.session.add(TaskFieldValue(
        task_id=task.id, board_column_id=column.id, value={"value": value},
    ))


@pytest.fixture
def seed_data(db_session):
    """Seed a board with typed columns and tasks.

    Tasks (position order):
        0  Design homepage   todo         low     Budget 400  [frontend, design]
        1  Build API         in_progress  high    Budget 600  [backend]
        2  Fix login bug     done         urgent  (no budget) [backend, bug]
        3  Write docs        todo         medium  (no values)

    Returns a dict with all created objects for easy access in tests.
    """
    # --- Users ---
    member = User(email="member@taskboard.test", full_name="Member User")
    outsider = User(email="outsider@taskboard.test", full_name="Outsider User")
    db_session.add_all([member, outsider])
    db_session.flush()

    # --- Workspace + membership ---
    workspace = Workspace(name="Test Workspace")
    db_session.add(workspace)
    db_session.flush()
    db_session.add(WorkspaceMember(
        user_id=member.id, workspace_id=workspace.id, role="owner",
    ))

    # --- Board + columns ---
    board = Board(workspace_id=workspace.id, name="Launch Plan")
    db_session.add(board)
    db_session.flush()

    budget = _column(board, "Budget", "currency", 0, {"currency_code": "USD"})
    labels = _column(board, "Labels", "labels", 1)
    launch = _column(board, "Launch date", "date", 2)
    reviewed = _column(board, "Reviewed", "checkbox", 3)
    contact = _column(board, "Contact email", "email", 4)
    db_session.flush()

    # --- Tasks ---
    specs = [
        ("Design homepage", "todo", "low"),
        ("Build API", "in_progress", "high"),
        ("Fix login bug", "done", "urgent"),
        ("Write docs", "todo", "medium"),
    ]
    tasks = []
    for position, (title, status, priority) in enumerate(specs):
        task = Task(
            board_id=board.id,
            workspace_id=workspace.id,
            title=title,
            status=status,
            priority=priority,
            creator_id=member.id,
            position=position,
        )
        db_session.add(task)
        tasks.append(task)
    db_session.flush()

    tasks[0].assignee_id = member.id
    tasks[0].due_date = datetime(2026, 3, 1, 9, 30)
    tasks[1].due_date = datetime(2026, 4, 15, 17, 0)

    _value(tasks[0], budget, 400.0)
    _value(tasks[1], budget, 600.0)
    _value(tasks[0], labels, ["frontend", "design"])
    _value(tasks[1], labels, ["backend"])
    _value(tasks[2], labels, ["backend", "bug"])
    _value(tasks[0], launch, "2026-03-01")
    _value(tasks[1], launch, "2026-04-15")
    _value(tasks[0], reviewed, True)
    _value(tasks[1], reviewed, False)
    _value(tasks[0], contact, "owner@example.com")

    db_session.commit()

    return {
        "member": member,
        "member_id": member.id,
        "outsider": outsider,
        "outsider_id": outsider.id,
        "workspace": workspace,
        "workspace_id": workspace.id,
        "board": board,
        "board_id": board.id,
        "columns": {
            "budget": budget,
            "labels": labels,
            "launch": launch,
            "reviewed": reviewed,
            "contact": contact,
        },
        "tasks": tasks,
        "task_ids": [task.id for task in tasks],
    }
