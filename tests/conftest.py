"""
Shared pytest fixtures and task/VTODO helpers.
"""

import logging
from datetime import datetime
from datetime import timezone

import pytest

from eds_task_sync.db import StateDatabase
from eds_task_sync.models import CommonTask
from eds_task_sync.models import Scope
from eds_task_sync.models import ScopeConfig
from eds_task_sync.models import ScopeId
from eds_task_sync.models import Side
from eds_task_sync.models import SyncConfig
from eds_task_sync.models import SyncStats

LEFT_LIST_ID = "list-1"
RIGHT_PROJECT_ID = "42"
SCOPE_ID = ScopeId(LEFT_LIST_ID, RIGHT_PROJECT_ID)
SCOPE = Scope(SCOPE_ID, "Groceries", "Groceries")

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_task(side: Side, task_id: str, title: str = "Task", **kwargs) -> CommonTask:
    """Return a CommonTask on ``side`` in the default scope, modified at T0."""
    kwargs.setdefault("modified_at", T0)
    kwargs.setdefault("list_id", LEFT_LIST_ID if side is Side.LEFT else RIGHT_PROJECT_ID)
    return CommonTask(side=side, id=task_id, title=title, **kwargs)


def left_task(task_id: str, title: str = "Task", **kwargs) -> CommonTask:
    return make_task(Side.LEFT, task_id, title, **kwargs)


def right_task(task_id: str, title: str = "Task", **kwargs) -> CommonTask:
    return make_task(Side.RIGHT, task_id, title, **kwargs)


def make_vtodo(uid: str, summary: str = "Test Task", *extra: str) -> str:
    """Return a minimal VTODO iCal string (no VCALENDAR wrapper) plus ``extra`` lines."""
    lines = [
        "BEGIN:VTODO",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        "DTSTAMP:20260224T000000Z",
        *extra,
        "END:VTODO",
    ]
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path) as db:
        yield db


@pytest.fixture
def sync_config(db_path):
    return SyncConfig(
        api_base="https://tasks.example.com",
        token="tk_secret_token",
        state_db_path=db_path,
        scopes=[ScopeConfig("Groceries", LEFT_LIST_ID, RIGHT_PROJECT_ID)],
        dry_run=False,
        verbose=False,
    )


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()
