"""
Comparison signatures for canonical tasks.

Nothing here is used for storage or display: these helpers only decide
whether two tasks are "the same" for matching and diffing.
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from eds_task_sync.models import AlarmKind
from eds_task_sync.models import CommonAlarm
from eds_task_sync.models import CommonTask
from eds_task_sync.models import ConflictFieldDiff
from eds_task_sync.models import DateKind
from eds_task_sync.models import DueProvenance
from eds_task_sync.models import Recurrence
from eds_task_sync.models import TaskDate

NO_DATE = "none"

# Vikunja serialises "no due date" as the Go zero time.
ZERO_DATE_PREFIX = "0001-01-01T00:00:00"


def normalize_due(raw: str | None) -> str:
    """Map nil, empty and the zero-date sentinel to ``"none"``."""
    if raw is None:
        return NO_DATE
    value = raw.strip()
    if not value or value.startswith(ZERO_DATE_PREFIX):
        return NO_DATE
    return value


def as_aware(value: datetime) -> datetime:
    """Attach the local zone to naive datetimes."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def parse_timestamp(raw: str | None) -> datetime | None:
    value = normalize_due(raw)
    if value == NO_DATE:
        return None
    return as_aware(datetime.fromisoformat(value))


def parse_task_date(raw: str | None) -> TaskDate:
    """Parse a wire string into a TaskDate.

    A bare ``YYYY-MM-DD`` is date-only; anything longer must be an ISO-8601
    timestamp.  Malformed values raise ``ValueError``.
    """
    value = normalize_due(raw)
    if value == NO_DATE:
        return TaskDate()
    if len(value) == 10:
        return TaskDate.on(date.fromisoformat(value))
    return TaskDate.at(datetime.fromisoformat(value))


def utc_stamp(value: datetime) -> str:
    return as_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_due_for_match(due: TaskDate | str | None) -> str:
    """Equality form of a due value.

    An instant that falls exactly on UTC midnight collapses to its date, so a
    date-only value and its UTC-midnight rendering compare equal.
    """
    if not isinstance(due, TaskDate):
        due = parse_task_date(due)
    if due.kind is DateKind.NONE:
        return NO_DATE
    if due.kind is DateKind.DATE_ONLY:
        return due.value.isoformat()
    utc = as_aware(due.value).astimezone(timezone.utc)
    if (utc.hour, utc.minute, utc.second, utc.microsecond) == (0, 0, 0, 0):
        return utc.date().isoformat()
    return utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def match_key(task: CommonTask) -> str:
    completed = "1" if task.completed else "0"
    return f"{task.title.strip().lower()}|{completed}|{normalize_due_for_match(task.due)}"


def normalize_anchor(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value in ("due", "due_date"):
        return "due_date"
    if value in ("start", "start_date"):
        return "start_date"
    if value in ("end", "end_date"):
        return "end_date"
    return NO_DATE


def alarm_comparable_set(task: CommonTask) -> frozenset[tuple]:
    """Reduce alarms to comparable tuples.

    Relative alarms are resolved to an absolute trigger whenever their anchor
    (start for ``start_date``, due otherwise) is an instant, so a precomputed
    absolute alarm and the equivalent relative one compare equal.
    """
    result = set()
    for alarm in task.alarms:
        if alarm.kind is AlarmKind.ABSOLUTE and alarm.absolute_time is not None:
            result.add(("abs", utc_stamp(alarm.absolute_time)))
            continue
        anchor = normalize_anchor(alarm.relative_anchor)
        offset = alarm.relative_offset_seconds or 0
        base = task.start if anchor == "start_date" else task.due
        if base.is_instant:
            result.add(("abs", utc_stamp(base.value + timedelta(seconds=offset))))
        else:
            result.add(("rel", anchor, offset))
    return frozenset(result)


def alarm_signature(alarms: list[CommonAlarm]) -> str:
    parts = []
    for alarm in alarms:
        absolute = utc_stamp(alarm.absolute_time) if alarm.absolute_time else ""
        offset = alarm.relative_offset_seconds
        relative = "" if offset is None else str(offset)
        anchor = normalize_anchor(alarm.relative_anchor) if alarm.relative_anchor else ""
        parts.append(f"{alarm.kind.value}|{anchor}|{absolute}|{relative}")
    return ",".join(sorted(parts))


def _alarm_set_text(task: CommonTask) -> str:
    return ",".join("|".join(str(p) for p in item) for item in sorted(alarm_comparable_set(task)))


def recurrence_signature(recurrence: Recurrence | None) -> str:
    if recurrence is None:
        return NO_DATE
    return f"{recurrence.frequency.value}|{recurrence.interval}"


def tasks_differ(a: CommonTask, b: CommonTask, ignore_due: bool = False) -> bool:
    """True when two tasks disagree on any synced field."""
    if a.title.strip().lower() != b.title.strip().lower():
        return True
    if a.completed != b.completed:
        return True
    if not ignore_due and normalize_due_for_match(a.due) != normalize_due_for_match(b.due):
        return True
    if alarm_comparable_set(a) != alarm_comparable_set(b):
        return True
    if recurrence_signature(a.recurrence) != recurrence_signature(b.recurrence):
        return True
    if (a.priority or 0) != (b.priority or 0):
        return True
    if (a.notes or "") != (b.notes or ""):
        return True
    return a.flagged != b.flagged


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _stamp_text(value: datetime | None) -> str:
    return utc_stamp(value) if value else NO_DATE


def _comparable_fields(task: CommonTask) -> list[tuple[str, str]]:
    return [
        ("title", task.title.strip().lower()),
        ("completed", _bool_text(task.completed)),
        ("due", normalize_due_for_match(task.due)),
        ("dueDateOnly", _bool_text(task.due_is_date_only)),
        ("start", normalize_due_for_match(task.start)),
        ("startDateOnly", _bool_text(task.start_is_date_only)),
        ("alarms", _alarm_set_text(task)),
        ("recurrence", recurrence_signature(task.recurrence)),
        ("priority", str(task.priority or 0)),
        ("notes", task.notes or ""),
        ("flagged", _bool_text(task.flagged)),
        ("modifiedAt", _stamp_text(task.modified_at)),
    ]


def conflict_field_diffs(left: CommonTask, right: CommonTask) -> list[ConflictFieldDiff]:
    """Field-level differences between two versions of a task.

    Values are compared in normalized form; titles are reported as written.
    """
    diffs = []
    for (name, left_value), (_, right_value) in zip(
        _comparable_fields(left), _comparable_fields(right)
    ):
        if left_value == right_value:
            continue
        if name == "title":
            left_value, right_value = left.title, right.title
        diffs.append(ConflictFieldDiff(name, left_value, right_value))
    return diffs


def task_snapshot(task: CommonTask) -> dict:
    """JSON-ready view of a task for the conflict store and report."""

    def date_text(value: TaskDate) -> str | None:
        if value.is_none:
            return None
        if value.is_date_only:
            return value.value.isoformat()
        return utc_stamp(value.value)

    return {
        "side": task.side.value,
        "id": task.id,
        "list_id": task.list_id,
        "title": task.title,
        "completed": task.completed,
        "due": date_text(task.due),
        "due_date_only": task.due_is_date_only,
        "due_inferred": task.due_provenance is DueProvenance.INFERRED,
        "start": date_text(task.start),
        "start_date_only": task.start_is_date_only,
        "modified_at": utc_stamp(task.modified_at) if task.modified_at else None,
        "alarms": [
            {
                "kind": alarm.kind.value,
                "absolute": utc_stamp(alarm.absolute_time) if alarm.absolute_time else None,
                "relative_seconds": alarm.relative_offset_seconds,
                "relative_to": alarm.relative_anchor,
            }
            for alarm in task.alarms
        ],
        "recurrence": (
            {"frequency": task.recurrence.frequency.value, "interval": task.recurrence.interval}
            if task.recurrence
            else None
        ),
        "priority": task.priority,
        "notes": task.notes,
        "flagged": task.flagged,
        "completed_at": utc_stamp(task.completed_at) if task.completed_at else None,
    }
