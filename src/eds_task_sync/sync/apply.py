"""
Apply a SyncPlan to both stores.

Every successful create/update/delete writes its mapping change and commits
before the next item is touched, so a run that dies half-way leaves the
state database consistent with whatever actually happened.
"""

import dataclasses
from datetime import date

from eds_task_sync.bridging import anchor_recurrence
from eds_task_sync.db import StateDatabase
from eds_task_sync.models import CommonTask
from eds_task_sync.models import DueProvenance
from eds_task_sync.models import LocalStoreAccessDeniedError
from eds_task_sync.models import NotAuthorizedError
from eds_task_sync.models import NotFoundError
from eds_task_sync.models import Scope
from eds_task_sync.models import Side
from eds_task_sync.models import SyncConfig
from eds_task_sync.models import SyncPlan
from eds_task_sync.models import SyncRecord
from eds_task_sync.models import SyncStats
from eds_task_sync.models import TaskDate
from eds_task_sync.models import TaskSyncError
from eds_task_sync.store import TaskStore

# Errors that will fail every remaining item the same way
FATAL_ERRORS = (NotAuthorizedError, LocalStoreAccessDeniedError)


def _arrow(source: TaskStore, target: TaskStore) -> str:
    return f"[{source.label}→{target.label}]"


def _new_record(scope: Scope, left: CommonTask, right: CommonTask) -> SyncRecord:
    return SyncRecord(
        left_id=left.id,
        right_id=right.id,
        scope=scope.id,
        last_seen_left=left.modified_at,
        last_seen_right=right.modified_at,
        date_only_due=left.due_is_date_only,
        date_only_start=left.start_is_date_only,
        due_provenance=left.due_provenance,
    )


def _for_left(task: CommonTask, left_store: TaskStore, current_left: CommonTask | None,
              record: SyncRecord | None, today: date) -> CommonTask:
    """Prepare a right-side task for writing to the left store."""
    if record is not None and record.inferred_due and task.due.is_none and current_left:
        # Keep the anchor we synthesized earlier instead of moving it to today
        return dataclasses.replace(
            task, due=current_left.due, due_provenance=DueProvenance.INFERRED
        )
    if left_store.requires_recurrence_anchor:
        return anchor_recurrence(task, today)
    return task


def _for_right(task: CommonTask, record: SyncRecord | None) -> CommonTask:
    """Prepare a left-side task for writing to the right store."""
    if record is not None and record.inferred_due:
        # The left due was synthesized; never push it to the right
        return dataclasses.replace(task, due=TaskDate(), due_provenance=DueProvenance.USER_SET)
    return task


def _handle_error(stats: SyncStats, logger, action: str, e: TaskSyncError):
    if isinstance(e, FATAL_ERRORS):
        raise e
    logger.error(f"Failed to {action}: {e}")
    stats.errors += 1


# ---------------------------------------------------------------------------
# Individual steps
# ---------------------------------------------------------------------------


def _record_auto_matches(config, logger, scope, plan, state_db):
    """Persist content matches without watermarks.

    Watermarks are written once the pair has settled: by the update that
    brings the two sides together, or by the watermark refresh when they
    already agree.  Until then the next run compares the tasks' own times.
    """
    for pair in plan.auto_matched:
        pair.record = dataclasses.replace(
            _new_record(scope, pair.left, pair.right), last_seen_left=None, last_seen_right=None
        )
        if config.dry_run:
            logger.info(
                f"[DRY RUN] Would LINK: {pair.left.id} <-> {pair.right.id} ({pair.left.title!r})"
            )
            continue
        state_db.mappings.upsert(pair.record)
        state_db.commit()
        logger.debug(f"Linked {pair.left.id} <-> {pair.right.id} by content")


def _create_right(config, stats, logger, scope, task, left_store, right_store, state_db):
    arrow = _arrow(left_store, right_store)
    if config.dry_run:
        logger.info(f"[DRY RUN] {arrow} Would CREATE: {task.title!r}")
        stats.created_right += 1
        return
    try:
        created = right_store.create_task(scope.id, task)
        state_db.mappings.upsert(_new_record(scope, task, created))
        state_db.commit()
        stats.created_right += 1
        logger.debug(f"{arrow} Created {created.id} from {task.id}")
    except TaskSyncError as e:
        _handle_error(stats, logger, f"create {right_store.label} task from {task.id}", e)


def _create_left(config, stats, logger, scope, task, left_store, right_store, state_db, today):
    arrow = _arrow(right_store, left_store)
    if config.dry_run:
        logger.info(f"[DRY RUN] {arrow} Would CREATE: {task.title!r}")
        stats.created_left += 1
        return
    try:
        payload = _for_left(task, left_store, None, None, today)
        created = left_store.create_task(scope.id, payload)
        # Provenance is ours, not the store's
        created = dataclasses.replace(created, due_provenance=payload.due_provenance)
        state_db.mappings.upsert(_new_record(scope, created, task))
        state_db.commit()
        stats.created_left += 1
        if payload.due_provenance is DueProvenance.INFERRED:
            logger.info(f"{arrow} Inferred due date for recurring task {task.title!r}")
        logger.debug(f"{arrow} Created {created.id} from {task.id}")
    except TaskSyncError as e:
        _handle_error(stats, logger, f"create {left_store.label} task from {task.id}", e)


def _update_right(config, stats, logger, scope, pair, left_store, right_store, state_db):
    arrow = _arrow(left_store, right_store)
    if config.dry_run:
        logger.info(f"[DRY RUN] {arrow} Would UPDATE: {pair.right.id} ({pair.left.title!r})")
        stats.updated_right += 1
        return
    try:
        payload = _for_right(pair.left, pair.record)
        updated = right_store.update_task(scope.id, pair.right.id, payload)
        record = _new_record(scope, pair.left, updated)
        if pair.record is not None:
            record.due_provenance = pair.record.due_provenance
        state_db.mappings.upsert(record)
        state_db.commit()
        pair.record = record
        stats.updated_right += 1
        logger.debug(f"{arrow} Updated {pair.right.id} from {pair.left.id}")
    except TaskSyncError as e:
        _handle_error(stats, logger, f"update {right_store.label} task {pair.right.id}", e)


def _update_left(config, stats, logger, scope, pair, left_store, right_store, state_db, today):
    arrow = _arrow(right_store, left_store)
    if config.dry_run:
        logger.info(f"[DRY RUN] {arrow} Would UPDATE: {pair.left.id} ({pair.right.title!r})")
        stats.updated_left += 1
        return
    try:
        payload = _for_left(pair.right, left_store, pair.left, pair.record, today)
        updated = left_store.update_task(scope.id, pair.left.id, payload)
        updated = dataclasses.replace(updated, due_provenance=payload.due_provenance)
        record = _new_record(scope, updated, pair.right)
        state_db.mappings.upsert(record)
        state_db.commit()
        pair.record = record
        stats.updated_left += 1
        logger.debug(f"{arrow} Updated {pair.left.id} from {pair.right.id}")
    except TaskSyncError as e:
        _handle_error(stats, logger, f"update {left_store.label} task {pair.left.id}", e)


def _refresh_watermarks(config, plan, skip: set[tuple[str, str]], state_db):
    """Move watermarks of settled pairs up to what was just observed."""
    if config.dry_run:
        return
    for pair in plan.mapped_pairs + plan.auto_matched:
        if pair.key in skip or pair.record is None:
            continue
        state_db.mappings.update_watermarks(
            pair.record, pair.left.modified_at, pair.right.modified_at
        )
    state_db.commit()


def _delete(config, stats, logger, scope, record, target_id, source, target, state_db):
    arrow = _arrow(source, target)
    counter = "deleted_left" if target.side is Side.LEFT else "deleted_right"
    if config.dry_run:
        logger.info(f"[DRY RUN] {arrow} Would DELETE: {target_id} ({source.label} deleted)")
        setattr(stats, counter, getattr(stats, counter) + 1)
        return
    try:
        target.delete_task(scope.id, target_id)
        setattr(stats, counter, getattr(stats, counter) + 1)
        logger.debug(f"{arrow} Deleted {target_id} ({source.label} deleted)")
    except NotFoundError:
        logger.warning(f"{arrow} {target_id} was already gone")
    except TaskSyncError as e:
        _handle_error(stats, logger, f"delete {target.label} task {target_id}", e)
        return
    state_db.mappings.delete(record)
    state_db.commit()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def apply_plan(
    config: SyncConfig,
    stats: SyncStats,
    logger,
    scope: Scope,
    plan: SyncPlan,
    left_store: TaskStore,
    right_store: TaskStore,
    state_db: StateDatabase,
    today: date | None = None,
):
    """Execute ``plan`` for one scope, in mapping-safe order."""
    today = today or date.today()

    # Pairs whose watermarks must not move: still in dispute, or written below
    skip = {pair.key for pair in plan.unknown_direction}
    skip.update(pair.key for pair in plan.conflicts)

    _record_auto_matches(config, logger, scope, plan, state_db)

    for task in plan.create_right:
        _create_right(config, stats, logger, scope, task, left_store, right_store, state_db)

    for task in plan.create_left:
        _create_left(
            config, stats, logger, scope, task, left_store, right_store, state_db, today
        )

    for pair in plan.update_right:
        skip.add(pair.key)
        _update_right(config, stats, logger, scope, pair, left_store, right_store, state_db)

    for pair in plan.update_left:
        skip.add(pair.key)
        _update_left(
            config, stats, logger, scope, pair, left_store, right_store, state_db, today
        )

    _refresh_watermarks(config, plan, skip, state_db)

    for record in plan.delete_right:
        _delete(
            config, stats, logger, scope, record, record.right_id,
            left_store, right_store, state_db,
        )

    for record in plan.delete_left:
        _delete(
            config, stats, logger, scope, record, record.left_id,
            right_store, left_store, state_db,
        )

    for record in plan.stale_records:
        logger.debug(f"Both tasks gone, dropping mapping {record.left_id} <-> {record.right_id}")
        if not config.dry_run:
            state_db.mappings.delete(record)
            state_db.commit()

    for record in plan.ignored_missing_completed:
        logger.debug(
            f"Counterpart completed, not propagating deletion: "
            f"{record.left_id} <-> {record.right_id}"
        )
