"""
In-memory fake task store for testing.

Duck-type-compatible stand-in for EDSTaskStore and VikunjaTaskStore.  No EDS
daemon or HTTP server is required; tasks are kept in a dict keyed by id.
"""

import dataclasses
from datetime import datetime
from datetime import timedelta

from eds_task_sync.bridging import local_midnight
from eds_task_sync.models import CommonTask
from eds_task_sync.models import DueProvenance
from eds_task_sync.models import NotFoundError
from eds_task_sync.models import ScopeId
from eds_task_sync.models import Side
from eds_task_sync.models import TaskDate
from tests.conftest import T0


class FakeTaskStore:
    """In-memory stub that satisfies the TaskStore protocol."""

    def __init__(
        self,
        side: Side,
        tasks: list[CommonTask] | None = None,
        collections: dict[str, str] | None = None,
        requires_recurrence_anchor: bool = False,
        instants_only: bool = False,
        label: str | None = None,
    ):
        self.side = side
        self.label = label or ("LEFT" if side is Side.LEFT else "RIGHT")
        self.requires_recurrence_anchor = requires_recurrence_anchor
        # Like Vikunja, turn date-only values into local-midnight instants on write
        self.instants_only = instants_only
        self.collections: dict[str, str] = dict(collections or {})
        self._tasks: dict[str, CommonTask] = {t.id: t for t in tasks or []}
        self.clock: datetime = T0 + timedelta(hours=1)
        self.creates: list[str] = []
        self.updates: list[str] = []
        self.deletes: list[str] = []
        self.created_collections: list[str] = []
        # title -> exception raised when writing a task with that title
        self.failures: dict[str, Exception] = {}
        self._next_id = 1

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    def _tick(self) -> datetime:
        self.clock += timedelta(minutes=1)
        return self.clock

    def _list_id(self, scope: ScopeId) -> str:
        return scope.left_list_id if self.side is Side.LEFT else scope.right_project_id

    def _stored(self, task: CommonTask, task_id: str, list_id: str) -> CommonTask:
        due, start = task.due, task.start
        if self.instants_only:
            if due.is_date_only:
                due = TaskDate.at(local_midnight(due.value))
            if start.is_date_only:
                start = TaskDate.at(local_midnight(start.value))
        return dataclasses.replace(
            task,
            side=self.side,
            id=task_id,
            list_id=list_id,
            due=due,
            start=start,
            alarms=list(task.alarms),
            modified_at=self._tick(),
            due_provenance=DueProvenance.USER_SET,
        )

    def _check_failure(self, task: CommonTask):
        error = self.failures.get(task.title)
        if error is not None:
            raise error

    # ------------------------------------------------------------------ #
    # TaskStore interface                                                  #
    # ------------------------------------------------------------------ #

    def list_collections(self) -> dict[str, str]:
        return dict(self.collections)

    def create_collection(self, title: str) -> str:
        cid = f"{self.label.lower()}-collection-{len(self.collections) + 1}"
        self.collections[cid] = title
        self.created_collections.append(cid)
        return cid

    def fetch_tasks(self, scope: ScopeId) -> list[CommonTask]:
        list_id = self._list_id(scope)
        return [
            dataclasses.replace(t, alarms=list(t.alarms))
            for t in self._tasks.values()
            if t.list_id == list_id
        ]

    def create_task(self, scope: ScopeId, task: CommonTask) -> CommonTask:
        self._check_failure(task)
        task_id = f"{self.label[0]}-new-{self._next_id}"
        self._next_id += 1
        stored = self._stored(task, task_id, self._list_id(scope))
        self._tasks[task_id] = stored
        self.creates.append(task_id)
        return dataclasses.replace(stored)

    def update_task(self, scope: ScopeId, task_id: str, task: CommonTask) -> CommonTask:
        if task_id not in self._tasks:
            raise NotFoundError(f"No task {task_id}")
        self._check_failure(task)
        stored = self._stored(task, task_id, self._list_id(scope))
        self._tasks[task_id] = stored
        self.updates.append(task_id)
        return dataclasses.replace(stored)

    def delete_task(self, scope: ScopeId, task_id: str) -> None:
        if task_id not in self._tasks:
            raise NotFoundError(f"No task {task_id}")
        del self._tasks[task_id]
        self.deletes.append(task_id)

    # ------------------------------------------------------------------ #
    # Test helpers                                                         #
    # ------------------------------------------------------------------ #

    def get(self, task_id: str) -> CommonTask:
        return self._tasks[task_id]

    def has(self, task_id: str) -> bool:
        return task_id in self._tasks

    def titles(self) -> set[str]:
        return {t.title for t in self._tasks.values()}

    def find(self, title: str) -> CommonTask:
        return next(t for t in self._tasks.values() if t.title == title)

    def edit(self, task_id: str, **changes) -> CommonTask:
        """Simulate a user edit: apply ``changes`` and bump the modification time."""
        changes.setdefault("modified_at", self._tick())
        self._tasks[task_id] = dataclasses.replace(self._tasks[task_id], **changes)
        return self._tasks[task_id]

    def remove(self, task_id: str):
        """Simulate a user deleting the task outside the sync."""
        del self._tasks[task_id]

    @property
    def task_count(self) -> int:
        return len(self._tasks)

    def reset_counters(self):
        """Clear the create/update/delete lists between sync runs."""
        self.creates.clear()
        self.updates.clear()
        self.deletes.clear()
