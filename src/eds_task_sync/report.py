"""
JSON conflict report for manual resolution.
"""

import json
from collections.abc import Iterable
from datetime import datetime
from datetime import timezone
from pathlib import Path

from eds_task_sync.models import ConflictResolution
from eds_task_sync.models import Scope
from eds_task_sync.normalize import conflict_field_diffs
from eds_task_sync.normalize import task_snapshot
from eds_task_sync.retry import redact


def _resolution_label(resolution: ConflictResolution) -> str:
    if resolution.winner is None:
        return "unresolved"
    return f"{resolution.policy.value}:{resolution.winner.value}"


def build_conflict_report(
    entries: list[tuple[Scope, ConflictResolution]],
    generated_at: datetime | None = None,
) -> dict:
    generated_at = generated_at or datetime.now(timezone.utc)
    conflicts = []
    for scope, resolution in entries:
        pair = resolution.pair
        conflicts.append(
            {
                "scope": {
                    "left_list_id": scope.id.left_list_id,
                    "left_title": scope.left_title,
                    "right_project_id": scope.id.right_project_id,
                    "right_title": scope.right_title,
                },
                "left": task_snapshot(pair.left),
                "right": task_snapshot(pair.right),
                "diffs": [
                    {"field": d.field, "left": d.left_value, "right": d.right_value}
                    for d in conflict_field_diffs(pair.left, pair.right)
                ],
                "resolution": _resolution_label(resolution),
            }
        )
    return {
        "generated_at": generated_at.isoformat(timespec="seconds"),
        "conflict_count": len(conflicts),
        "conflicts": conflicts,
    }


def write_conflict_report(
    path: Path,
    entries: list[tuple[Scope, ConflictResolution]],
    secrets: Iterable[str] = (),
) -> dict:
    """Write the report to ``path`` with credentials scrubbed; return the report."""
    report = build_conflict_report(entries)
    text = redact(json.dumps(report, indent=2, ensure_ascii=False), secrets)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + "\n", encoding="utf-8")
    return report
