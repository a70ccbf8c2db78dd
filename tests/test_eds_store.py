"""
Tests for the EDS-backed TaskStore.

The ECal client is replaced by an in-memory list client, so only PyGObject
itself (not a running EDS daemon) is needed.
"""

import pytest

gi = pytest.importorskip("gi")
try:
    gi.require_version("EDataServer", "1.2")
    gi.require_version("ECal", "2.0")
    gi.require_version("ICalGLib", "3.0")
except ValueError:
    pytest.skip("EDS typelibs not installed", allow_module_level=True)

from gi.repository import GLib  # noqa: E402

from eds_task_sync.eds_client import EDSTaskStore  # noqa: E402
from eds_task_sync.eds_client import _translate  # noqa: E402
from eds_task_sync.ical import parse_vtodo  # noqa: E402
from eds_task_sync.models import ConfigError  # noqa: E402
from eds_task_sync.models import LocalStoreAccessDeniedError  # noqa: E402
from eds_task_sync.models import NotFoundError  # noqa: E402
from eds_task_sync.models import TaskSyncError  # noqa: E402
from tests.conftest import LEFT_LIST_ID  # noqa: E402
from tests.conftest import SCOPE_ID  # noqa: E402
from tests.conftest import left_task  # noqa: E402
from tests.conftest import make_vtodo  # noqa: E402


class FakeListClient:
    """Duck-type stand-in for EDSTaskListClient; VTODO strings keyed by UID."""

    def __init__(self, *vtodos: str):
        self.tasks = {parse_vtodo(v, LEFT_LIST_ID).id: v for v in vtodos}

    def get_all_tasks(self) -> list[str]:
        return list(self.tasks.values())

    def get_task(self, uid: str) -> str:
        if uid not in self.tasks:
            raise NotFoundError(uid)
        return self.tasks[uid]

    def create_task(self, ical: str) -> str:
        uid = parse_vtodo(ical, LEFT_LIST_ID).id
        self.tasks[uid] = ical
        return uid

    def modify_task(self, ical: str):
        self.tasks[parse_vtodo(ical, LEFT_LIST_ID).id] = ical

    def remove_task(self, uid: str):
        del self.tasks[uid]


def _store(*vtodos: str) -> tuple[EDSTaskStore, FakeListClient]:
    store = EDSTaskStore(registry=object())
    client = FakeListClient(*vtodos)
    store._clients[LEFT_LIST_ID] = client
    return store, client


class TestEDSTaskStore:
    def test_fetch(self):
        store, _ = _store(make_vtodo("u1", "Milk"), make_vtodo("u2", "Eggs"))
        assert sorted(t.title for t in store.fetch_tasks(SCOPE_ID)) == ["Eggs", "Milk"]

    def test_unreadable_task_fails_the_fetch(self):
        store, client = _store()
        client.tasks["bad"] = "BEGIN:VTODO\r\nSUMMARY:No uid\r\nEND:VTODO\r\n"
        with pytest.raises(TaskSyncError, match="Unreadable"):
            store.fetch_tasks(SCOPE_ID)

    def test_create_returns_stored_copy(self):
        store, client = _store()
        created = store.create_task(SCOPE_ID, left_task("ignored", "Milk"))
        assert created.id in client.tasks
        assert created.id != "ignored"
        assert created.title == "Milk"

    def test_update_keeps_unowned_properties(self):
        store, client = _store(make_vtodo("u1", "Milk", "X-EVOLUTION-FOO:bar"))
        updated = store.update_task(SCOPE_ID, "u1", left_task("u1", "Oat milk"))
        assert updated.title == "Oat milk"
        assert "X-EVOLUTION-FOO:bar" in client.tasks["u1"]

    def test_delete(self):
        store, client = _store(make_vtodo("u1", "Milk"))
        store.delete_task(SCOPE_ID, "u1")
        assert client.tasks == {}

    def test_lists_are_never_created(self):
        store, _ = _store()
        with pytest.raises(ConfigError):
            store.create_collection("Chores")


class TestTranslate:
    def test_not_found(self):
        error = GLib.Error("Object not found", "e-cal-client-error-quark", 1)
        assert isinstance(_translate(error, "read"), NotFoundError)

    def test_permission_denied(self):
        error = GLib.Error("Permission denied", "e-client-error-quark", 4)
        assert isinstance(_translate(error, "write"), LocalStoreAccessDeniedError)

    def test_other(self):
        error = GLib.Error("Backend is offline", "e-client-error-quark", 2)
        translated = _translate(error, "fetch")
        assert type(translated) is TaskSyncError
        assert "Backend is offline" in str(translated)
