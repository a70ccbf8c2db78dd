"""
Whole-side conflict resolution policies.
"""

import logging

from eds_task_sync.models import ConflictPolicy
from eds_task_sync.models import ConflictResolution
from eds_task_sync.models import ConflictsPresentError
from eds_task_sync.models import Side
from eds_task_sync.models import SyncPlan
from eds_task_sync.models import TaskPair

logger = logging.getLogger(__name__)


def pick_winner(pair: TaskPair, policy: ConflictPolicy) -> Side | None:
    """Return the side whose version should be kept, or None to leave the pair alone."""
    if policy is ConflictPolicy.FAVOR_LEFT:
        return Side.LEFT
    if policy is ConflictPolicy.FAVOR_RIGHT:
        return Side.RIGHT
    if policy is ConflictPolicy.LAST_WRITE_WINS:
        left_at = pair.left.modified_at
        right_at = pair.right.modified_at
        if left_at is None or right_at is None or left_at == right_at:
            return None
        return Side.LEFT if left_at > right_at else Side.RIGHT
    return None


def resolve_conflicts(
    plan: SyncPlan,
    default: ConflictPolicy,
    overrides: dict[tuple[str, str], ConflictPolicy] | None = None,
) -> list[ConflictResolution]:
    """Apply policies to ``plan.conflicts``.

    Resolved pairs are appended to the update queue of the losing side.
    ``plan.conflicts`` itself is left intact for reporting.
    """
    overrides = overrides or {}
    resolutions = []
    for pair in plan.conflicts:
        policy = overrides.get(pair.key, default)
        winner = pick_winner(pair, policy)
        if winner is Side.LEFT:
            plan.update_right.append(pair)
        elif winner is Side.RIGHT:
            plan.update_left.append(pair)
        elif policy is not ConflictPolicy.NONE:
            logger.warning(
                f"Conflict on {pair.left.title!r} left unresolved by {policy.value}: "
                f"missing or equal modification times"
            )
        resolutions.append(ConflictResolution(pair=pair, policy=policy, winner=winner))
    return resolutions


def ensure_apply_allowed(resolutions: list[ConflictResolution], allow_conflicts: bool) -> None:
    """Refuse to apply while conflicts remain that no policy was asked to handle."""
    if allow_conflicts:
        return
    blocking = [
        r for r in resolutions if not r.resolved and r.policy is ConflictPolicy.NONE
    ]
    if blocking:
        raise ConflictsPresentError(len(blocking))


def parse_override(text: str) -> tuple[tuple[str, str], ConflictPolicy]:
    """Parse ``LEFT_ID:RIGHT_ID=POLICY``."""
    ids, sep, policy_name = text.rpartition("=")
    left_id, colon, right_id = ids.rpartition(":")
    if not sep or not colon or not left_id or not right_id:
        raise ValueError(f"Override must look like LEFT_ID:RIGHT_ID=POLICY, got {text!r}")
    return (left_id, right_id), ConflictPolicy(policy_name.strip())
