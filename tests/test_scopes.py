"""
Unit tests for scope resolution against live collections.
"""

from eds_task_sync.models import ScopeConfig
from eds_task_sync.models import ScopeId
from eds_task_sync.models import Side
from eds_task_sync.sync.scopes import find_collection
from eds_task_sync.sync.scopes import normalize_title
from eds_task_sync.sync.scopes import resolve_scopes
from tests.fake_store import FakeTaskStore


def _stores(left=None, right=None):
    return (
        FakeTaskStore(Side.LEFT, collections=left or {"list-1": "Groceries"}),
        FakeTaskStore(Side.RIGHT, collections=right or {"42": "Groceries"}),
    )


class TestFindCollection:
    def test_title_normalization(self):
        assert normalize_title("  Groceries  List ") == "groceries list"
        assert normalize_title("Cafe\u0301") == normalize_title("Caf\u00e9")

    def test_by_id_or_title(self):
        collections = {"42": "Groceries", "43": "Chores"}
        assert find_collection(collections, "43", "RIGHT") == "43"
        assert find_collection(collections, "groceries", "RIGHT") == "42"
        assert find_collection(collections, "Garden", "RIGHT") is None

    def test_duplicate_titles_pick_first_and_warn(self, caplog):
        collections = {"42": "Groceries", "44": "groceries"}
        assert find_collection(collections, "Groceries", "RIGHT") == "42"
        assert "2 collections" in caplog.text


class TestResolveScopes:
    def test_resolves_titles_to_ids(self):
        left, right = _stores()
        [scope] = resolve_scopes([ScopeConfig("Groceries", "Groceries", "Groceries")], left, right)
        assert scope.id == ScopeId("list-1", "42")
        assert (scope.left_title, scope.right_title) == ("Groceries", "Groceries")

    def test_creates_missing_collection(self):
        left, right = _stores()
        [scope] = resolve_scopes([ScopeConfig("Chores", "list-1", "Chores")], left, right)
        [created] = right.created_collections
        assert right.collections[created] == "Chores"
        assert scope.id == ScopeId("list-1", created)

    def test_missing_collection_skipped_without_create(self):
        left, right = _stores()
        scopes = resolve_scopes(
            [ScopeConfig("Chores", "list-1", "Chores")], left, right, create_missing=False
        )
        assert scopes == []
        assert right.created_collections == []

    def test_repeated_pairing_is_ignored(self):
        left, right = _stores()
        configs = [
            ScopeConfig("Groceries", "list-1", "42"),
            ScopeConfig("Shopping", "Groceries", "Groceries"),
        ]
        assert len(resolve_scopes(configs, left, right)) == 1

    def test_reused_local_list_is_ignored(self, caplog):
        left, right = _stores(right={"42": "Groceries", "43": "Chores"})
        configs = [ScopeConfig("Groceries", "list-1", "42"), ScopeConfig("Chores", "list-1", "43")]

        scopes = resolve_scopes(configs, left, right)

        assert [s.id for s in scopes] == [ScopeId("list-1", "42")]
        assert "reuses local list list-1" in caplog.text

    def test_reused_project_is_ignored(self, caplog):
        left, right = _stores(left={"list-1": "Groceries", "list-2": "Shopping"})
        configs = [ScopeConfig("Groceries", "list-1", "42"), ScopeConfig("Shopping", "list-2", "42")]

        scopes = resolve_scopes(configs, left, right)

        assert [s.id for s in scopes] == [ScopeId("list-1", "42")]
        assert "reuses project 42" in caplog.text

    def test_reused_local_list_does_not_create_a_project(self):
        left, right = _stores()
        configs = [ScopeConfig("Groceries", "list-1", "42"), ScopeConfig("Chores", "list-1", "Chores")]

        assert len(resolve_scopes(configs, left, right)) == 1
        assert right.created_collections == []
