"""
Turn configured pairings into concrete (list id, project id) scopes.
"""

import logging
import re
import unicodedata

from eds_task_sync.models import Scope
from eds_task_sync.models import ScopeConfig
from eds_task_sync.models import ScopeId
from eds_task_sync.store import TaskStore

logger = logging.getLogger(__name__)


def normalize_title(title: str) -> str:
    """NFC, lower-case, whitespace collapsed."""
    text = unicodedata.normalize("NFC", title or "")
    return re.sub(r"\s+", " ", text).strip().lower()


def find_collection(collections: dict[str, str], wanted: str, label: str) -> str | None:
    """Return the id of ``wanted``, given either as an id or as a title."""
    if wanted in collections:
        return wanted
    matches = [
        cid for cid, title in collections.items()
        if normalize_title(title) == normalize_title(wanted)
    ]
    if len(matches) > 1:
        logger.warning(
            f"{label}: {len(matches)} collections are titled {wanted!r}; using {matches[0]}"
        )
    return matches[0] if matches else None


def _resolve_side(store: TaskStore, collections: dict[str, str], wanted: str,
                  create_missing: bool) -> tuple[str | None, str]:
    cid = find_collection(collections, wanted, store.label)
    if cid is not None:
        return cid, collections[cid]
    if not create_missing:
        logger.info(f"[DRY RUN] Would create {store.label} collection {wanted!r}")
        return None, wanted
    cid = store.create_collection(wanted)
    collections[cid] = wanted
    return cid, wanted


def resolve_scopes(
    scope_configs: list[ScopeConfig],
    left_store: TaskStore,
    right_store: TaskStore,
    create_missing: bool = True,
) -> list[Scope]:
    """
    Resolve every configured pairing against the live collections.

    Missing collections are created when ``create_missing`` is set; otherwise
    the pairing is skipped for this run.  A pairing whose local list or
    project is already taken by an earlier one is ignored.
    """
    left_collections = left_store.list_collections()
    right_collections = right_store.list_collections()

    scopes = []
    for scope_config in scope_configs:
        left_id, left_title = _resolve_side(
            left_store, left_collections, scope_config.local_list, create_missing
        )
        if left_id is not None and any(s.id.left_list_id == left_id for s in scopes):
            logger.warning(
                f"Scope {scope_config.name!r} reuses local list {left_id}; ignoring it"
            )
            continue
        right_id, right_title = _resolve_side(
            right_store, right_collections, scope_config.project, create_missing
        )
        if right_id is not None and any(s.id.right_project_id == right_id for s in scopes):
            logger.warning(
                f"Scope {scope_config.name!r} reuses project {right_id}; ignoring it"
            )
            continue
        if left_id is None or right_id is None:
            logger.info(f"Skipping scope {scope_config.name!r} until its collections exist")
            continue
        scope = Scope(ScopeId(left_id, right_id), left_title, right_title)
        logger.debug(f"Scope {scope_config.name!r}: {scope.id}")
        scopes.append(scope)
    return scopes
