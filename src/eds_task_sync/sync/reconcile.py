"""
Reconciliation: turn two task snapshots plus the persisted mappings into a SyncPlan.

``diff_tasks`` is pure and deterministic; ``Reconciler`` wraps it with the
mapping/conflict stores for one run.
"""

import logging
from typing import TYPE_CHECKING

from eds_task_sync.bridging import restore_task_dates
from eds_task_sync.models import CommonTask
from eds_task_sync.models import Scope
from eds_task_sync.models import SyncPlan
from eds_task_sync.models import SyncRecord
from eds_task_sync.models import TaskPair
from eds_task_sync.normalize import match_key
from eds_task_sync.normalize import tasks_differ

if TYPE_CHECKING:
    from eds_task_sync.db import ConflictStore
    from eds_task_sync.db import MappingStore


def _compare_own_timestamps(plan: SyncPlan, pair: TaskPair) -> None:
    """Pick a direction from the items' own modification times.

    Used when there is no watermark to compare against.  Equal or missing
    timestamps leave the pair alone.
    """
    left_at = pair.left.modified_at
    right_at = pair.right.modified_at
    if left_at is None or right_at is None or left_at == right_at:
        plan.unknown_direction.append(pair)
    elif left_at > right_at:
        plan.update_right.append(pair)
    else:
        plan.update_left.append(pair)


def _diff_mapped_pair(plan: SyncPlan, pair: TaskPair) -> None:
    record = pair.record
    plan.mapped_pairs.append(pair)

    if not tasks_differ(pair.left, pair.right, ignore_due=record.inferred_due):
        return

    if record.last_seen_left is None or record.last_seen_right is None:
        _compare_own_timestamps(plan, pair)
        return

    left_at = pair.left.modified_at
    right_at = pair.right.modified_at
    left_changed = left_at is not None and left_at > record.last_seen_left
    right_changed = right_at is not None and right_at > record.last_seen_right

    if left_changed and right_changed:
        plan.conflicts.append(pair)
    elif left_changed:
        plan.update_right.append(pair)
    elif right_changed:
        plan.update_left.append(pair)


def _group_by_key(tasks: list[CommonTask]) -> dict[str, list[CommonTask]]:
    groups: dict[str, list[CommonTask]] = {}
    for task in tasks:
        groups.setdefault(match_key(task), []).append(task)
    return groups


def diff_tasks(
    left: list[CommonTask],
    right: list[CommonTask],
    records: list[SyncRecord],
) -> SyncPlan:
    """Compute the SyncPlan for one scope."""
    plan = SyncPlan()
    left_by_id = {task.id: task for task in left}
    right_by_id = {task.id: task for task in right}
    mapped_left: set[str] = set()
    mapped_right: set[str] = set()

    # Phase 1: existing mappings
    for record in records:
        mapped_left.add(record.left_id)
        mapped_right.add(record.right_id)
        left_task = left_by_id.get(record.left_id)
        right_task = right_by_id.get(record.right_id)

        if left_task is None and right_task is None:
            plan.stale_records.append(record)
        elif left_task is None:
            # Left deleted: propagate to right unless the survivor is finished work
            if right_task.completed:
                plan.ignored_missing_completed.append(record)
            else:
                plan.delete_right.append(record)
        elif right_task is None:
            if left_task.completed:
                plan.ignored_missing_completed.append(record)
            else:
                plan.delete_left.append(record)
        else:
            right_task = restore_task_dates(
                right_task, record.date_only_due, record.date_only_start
            )
            _diff_mapped_pair(plan, TaskPair(left_task, right_task, record))

    # Phase 2: signature matching of everything not yet mapped
    left_groups = _group_by_key([t for t in left if t.id not in mapped_left])
    right_groups = _group_by_key([t for t in right if t.id not in mapped_right])

    keys = list(left_groups)
    keys.extend(key for key in right_groups if key not in left_groups)

    for key in keys:
        left_candidates = left_groups.get(key, [])
        right_candidates = right_groups.get(key, [])

        if left_candidates and right_candidates:
            if len(left_candidates) == 1 and len(right_candidates) == 1:
                pair = TaskPair(left_candidates[0], right_candidates[0])
                plan.auto_matched.append(pair)
                if tasks_differ(pair.left, pair.right):
                    _compare_own_timestamps(plan, pair)
            else:
                plan.ambiguous_keys.append(key)
        elif left_candidates:
            plan.create_right.extend(t for t in left_candidates if not t.completed)
        else:
            plan.create_left.extend(t for t in right_candidates if not t.completed)

    return plan


def describe_plan(plan: SyncPlan) -> str:
    return (
        f"create left={len(plan.create_left)} right={len(plan.create_right)}, "
        f"update left={len(plan.update_left)} right={len(plan.update_right)}, "
        f"delete left={len(plan.delete_left)} right={len(plan.delete_right)}, "
        f"conflicts={len(plan.conflicts)}, auto-matched={len(plan.auto_matched)}, "
        f"ambiguous={len(plan.ambiguous_keys)}, unknown={len(plan.unknown_direction)}"
    )


class Reconciler:
    """Plans one scope at a time against the persisted mapping set."""

    def __init__(self, mappings: "MappingStore", conflicts: "ConflictStore"):
        self.mappings = mappings
        self.conflicts = conflicts
        self.logger = logging.getLogger(__name__)

    def plan(self, scope: Scope, left: list[CommonTask], right: list[CommonTask]) -> SyncPlan:
        records = self.mappings.load(scope.id)
        self.logger.debug(
            f"[{scope.label}] {len(left)} left, {len(right)} right, {len(records)} mapped"
        )
        plan = diff_tasks(left, right, records)

        for key in plan.ambiguous_keys:
            self.logger.warning(f"[{scope.label}] Ambiguous match key, skipped: {key}")
        for pair in plan.unknown_direction:
            self.logger.warning(
                f"[{scope.label}] Cannot tell which side changed, skipped: {pair.left.title!r}"
            )
        self.logger.info(f"[{scope.label}] Plan: {describe_plan(plan)}")
        return plan

    def record_conflicts(self, scope: Scope, plan: SyncPlan) -> None:
        """Replace the stored conflict set for ``scope`` with this run's conflicts."""
        self.conflicts.replace(scope.id, plan.conflicts)
