"""
Evolution Data Server task-list connectivity and the left-hand TaskStore.
"""

import logging
import uuid

import gi

gi.require_version("EDataServer", "1.2")
gi.require_version("ECal", "2.0")
gi.require_version("ICalGLib", "3.0")
from gi.repository import ECal
from gi.repository import EDataServer
from gi.repository import GLib
from gi.repository import ICalGLib
from rich.console import Console
from rich.table import Table
from rich.text import Text

from eds_task_sync.ical import build_vtodo
from eds_task_sync.ical import parse_vtodo
from eds_task_sync.models import CommonTask
from eds_task_sync.models import ConfigError
from eds_task_sync.models import LocalStoreAccessDeniedError
from eds_task_sync.models import NotFoundError
from eds_task_sync.models import ScopeId
from eds_task_sync.models import Side
from eds_task_sync.models import TaskSyncError

logger = logging.getLogger(__name__)

# E_CLIENT_ERROR_PERMISSION_DENIED / E_CAL_CLIENT_ERROR_OBJECT_NOT_FOUND
_EDS_PERMISSION_DENIED_CODE = 4
_EDS_NOT_FOUND_CODE = 1
_EDS_CAL_CLIENT_ERROR_DOMAIN = "e-cal-client-error-quark"
_EDS_CLIENT_ERROR_DOMAIN = "e-client-error-quark"


def _translate(e: GLib.Error, action: str) -> TaskSyncError:
    """Map a GLib.Error from EDS onto the typed sync errors."""
    domain = e.domain or ""
    message = e.message or str(e)
    if _EDS_CAL_CLIENT_ERROR_DOMAIN in domain and e.code == _EDS_NOT_FOUND_CODE:
        return NotFoundError(f"{action}: {message}")
    if "object not found" in message.lower():
        return NotFoundError(f"{action}: {message}")
    if (_EDS_CLIENT_ERROR_DOMAIN in domain and e.code == _EDS_PERMISSION_DENIED_CODE) or (
        "permission denied" in message.lower()
    ):
        return LocalStoreAccessDeniedError(f"{action}: {message}")
    return TaskSyncError(f"{action}: {message}")


def _as_text(obj) -> str:
    """Handle both string and native Component objects from EDS API."""
    if isinstance(obj, str):
        return obj
    return obj.as_ical_string()


def list_task_lists(registry: EDataServer.SourceRegistry) -> list[tuple[str, str, str]]:
    """Return ``(uid, display_name, account)`` for every EDS task list."""
    entries = []
    for source in registry.list_sources(EDataServer.SOURCE_EXTENSION_TASK_LIST):
        account = ""
        parent = source.get_parent()
        if parent:
            parent_source = registry.ref_source(parent)
            if parent_source:
                account = parent_source.get_display_name() or ""
        entries.append((source.get_uid() or "", source.get_display_name() or "", account))
    return entries


def print_task_lists(registry: EDataServer.SourceRegistry, console: Console) -> None:
    """Render all EDS task lists as a Rich table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Display Name", style="bold")
    table.add_column("Account")
    table.add_column("Mode")
    table.add_column("UID", style="dim")

    for uid, name, account in list_task_lists(registry):
        source = registry.ref_source(uid)
        try:
            client = ECal.Client.connect_sync(source, ECal.ClientSourceType.TASKS, 5, None)
            mode = "Read-write" if not client.is_readonly() else "Read-only"
            mode_style = "green" if not client.is_readonly() else "yellow"
        except GLib.Error:
            mode = "Unknown"
            mode_style = "red"
        table.add_row(name or "(unnamed)", account, Text(mode, style=mode_style), uid)

    console.print(table)


class EDSTaskListClient:
    """Wrapper for Evolution Data Server task-list operations."""

    def __init__(self, registry: EDataServer.SourceRegistry, list_uid: str):
        self.registry = registry
        self.list_uid = list_uid
        self.client: ECal.Client | None = None
        self.readonly = False

    def connect(self, timeout: int = 10):
        """Connect to the specified task list in EDS."""
        source = self.registry.ref_source(self.list_uid)
        if not source:
            raise ConfigError(f"Task list with UID '{self.list_uid}' not found in EDS")

        try:
            self.client = ECal.Client.connect_sync(
                source, ECal.ClientSourceType.TASKS, timeout, None
            )
        except GLib.Error as e:
            raise _translate(e, f"Failed to connect to task list {self.list_uid}") from e
        self.readonly = self.client.is_readonly()

    def _require(self, writing: bool = False) -> ECal.Client:
        if not self.client:
            raise TaskSyncError("Client not connected")
        if writing and self.readonly:
            raise LocalStoreAccessDeniedError(f"Task list {self.list_uid} is read-only")
        return self.client

    def get_all_tasks(self) -> list[str]:
        """Retrieve all VTODOs in the list as iCal strings."""
        client = self._require()
        try:
            # "#t" (boolean true) is the sexp for "all objects"
            _, objects = client.get_object_list_sync("#t", None)
        except GLib.Error as e:
            raise _translate(e, "Failed to fetch tasks") from e
        return [_as_text(obj) for obj in objects]

    def get_task(self, uid: str) -> str:
        client = self._require()
        try:
            _, icalcomp = client.get_object_sync(uid, None, None)
        except GLib.Error as e:
            raise _translate(e, f"Failed to read task {uid}") from e
        return _as_text(icalcomp)

    def create_task(self, ical: str) -> str:
        """Create a VTODO and return the UID the backend stored it under."""
        client = self._require(writing=True)
        component = ICalGLib.Component.new_from_string(ical)
        try:
            success, out_uid = client.create_object_sync(
                component, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise _translate(e, "Failed to create task") from e
        if not success:
            raise TaskSyncError("Failed to create task")
        return out_uid or component.get_uid()

    def modify_task(self, ical: str):
        client = self._require(writing=True)
        component = ICalGLib.Component.new_from_string(ical)
        try:
            success = client.modify_object_sync(
                component, ECal.ObjModType.ALL, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise _translate(e, f"Failed to modify task {component.get_uid()}") from e
        if not success:
            raise TaskSyncError(f"Failed to modify task {component.get_uid()}")

    def remove_task(self, uid: str):
        client = self._require(writing=True)
        try:
            success = client.remove_object_sync(
                uid,
                None,  # rid (recurrence-id)
                ECal.ObjModType.ALL,
                ECal.OperationFlags.NONE,
                None,  # cancellable
            )
        except GLib.Error as e:
            raise _translate(e, f"Failed to remove task {uid}") from e
        if not success:
            raise TaskSyncError(f"Failed to remove task {uid}")


class EDSTaskStore:
    """Left-hand TaskStore: one EDS task list per scope."""

    side = Side.LEFT
    label = "EDS"
    requires_recurrence_anchor = True

    def __init__(self, registry: EDataServer.SourceRegistry | None = None):
        self.registry = registry or EDataServer.SourceRegistry.new_sync(None)
        self._clients: dict[str, EDSTaskListClient] = {}

    def _client(self, list_uid: str) -> EDSTaskListClient:
        client = self._clients.get(list_uid)
        if client is None:
            client = EDSTaskListClient(self.registry, list_uid)
            client.connect()
            self._clients[list_uid] = client
        return client

    def list_collections(self) -> dict[str, str]:
        return {uid: name for uid, name, _ in list_task_lists(self.registry)}

    def create_collection(self, title: str) -> str:
        raise ConfigError(
            f"Local task list {title!r} does not exist; create it in Evolution first"
        )

    def fetch_tasks(self, scope: ScopeId) -> list[CommonTask]:
        tasks = []
        for ical in self._client(scope.left_list_id).get_all_tasks():
            try:
                tasks.append(parse_vtodo(ical, scope.left_list_id))
            except ValueError as e:
                raise TaskSyncError(f"Unreadable task in {scope.left_list_id}: {e}") from e
        return tasks

    def create_task(self, scope: ScopeId, task: CommonTask) -> CommonTask:
        client = self._client(scope.left_list_id)
        uid = client.create_task(build_vtodo(task, str(uuid.uuid4())))
        logger.debug(f"EDS assigned UID: {uid}")
        # Fetch the task back to get the actual stored version
        return parse_vtodo(client.get_task(uid), scope.left_list_id)

    def update_task(self, scope: ScopeId, task_id: str, task: CommonTask) -> CommonTask:
        client = self._client(scope.left_list_id)
        existing = client.get_task(task_id)
        client.modify_task(build_vtodo(task, task_id, existing=existing))
        return parse_vtodo(client.get_task(task_id), scope.left_list_id)

    def delete_task(self, scope: ScopeId, task_id: str) -> None:
        self._client(scope.left_list_id).remove_task(task_id)
