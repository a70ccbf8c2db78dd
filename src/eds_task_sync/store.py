"""
The contract both sides of a sync implement.
"""

from typing import Protocol

from eds_task_sync.models import CommonTask
from eds_task_sync.models import ScopeId
from eds_task_sync.models import Side


class TaskStore(Protocol):
    """A task collection the synchronizer can read and mutate.

    Ids are opaque strings that stay stable for the life of a task, and each
    task carries its own modification timestamp.  ``create_task`` and
    ``update_task`` return the task as re-read from the store.
    """

    side: Side
    label: str
    # Recurring tasks need a due date on this side
    requires_recurrence_anchor: bool

    def list_collections(self) -> dict[str, str]:
        """Map collection id to display title."""
        ...

    def create_collection(self, title: str) -> str: ...

    def fetch_tasks(self, scope: ScopeId) -> list[CommonTask]: ...

    def create_task(self, scope: ScopeId, task: CommonTask) -> CommonTask: ...

    def update_task(self, scope: ScopeId, task_id: str, task: CommonTask) -> CommonTask: ...

    def delete_task(self, scope: ScopeId, task_id: str) -> None: ...
