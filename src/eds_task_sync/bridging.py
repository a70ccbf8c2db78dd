"""
Converters between the canonical task model and each side's encodings.

Recurrence
----------
EDS stores an RRULE ({frequency, interval}); Vikunja stores
``repeat_after`` seconds plus ``repeat_mode``.  The mapping between them is
deliberately lossy and one-directional:

* ``repeat_mode == 1`` is "every calendar month"; the interval is fixed at 1
  and ``repeat_after`` is ignored.
* ``repeat_mode == 0`` or missing is time-based and only recognised when
  ``repeat_after`` is an exact multiple of a week (checked first) or a day.
* Anything else, including an out-of-range mode with ``repeat_after == 0``,
  is no recurrence.

Going the other way, monthly recurrences lose their interval and yearly ones
cannot be expressed at all.

Priority
--------
The canonical scale is the iCalendar one used by EDS (0 = none, 1 = high,
5 = medium, 9 = low).  Vikunja uses 0 = unset and 1..5 = low..do-now.
"""

import dataclasses
from datetime import date
from datetime import datetime
from datetime import timezone

from eds_task_sync.models import CommonTask
from eds_task_sync.models import DueProvenance
from eds_task_sync.models import Frequency
from eds_task_sync.models import Recurrence
from eds_task_sync.models import TaskDate

SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800

REPEAT_MODE_DEFAULT = 0
REPEAT_MODE_MONTHLY = 1


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def local_midnight(day: date) -> datetime:
    """Midnight of ``day`` in the local zone, with that date's UTC offset."""
    return datetime(day.year, day.month, day.day).astimezone()


def to_wire_timestamp(value: TaskDate) -> str | None:
    """Render a TaskDate for a field that only accepts full timestamps.

    Date-only values are anchored to local midnight rather than UTC midnight
    so they do not shift a day when displayed in the user's zone.
    """
    if value.is_none:
        return None
    if value.is_date_only:
        return local_midnight(value.value).isoformat(timespec="seconds")
    return value.value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def restore_date_only(value: TaskDate, date_only: bool) -> TaskDate:
    """Turn an instant back into a local date when the mapping says it was one."""
    if date_only and value.is_instant:
        return TaskDate.on(value.value.astimezone().date())
    return value


def restore_task_dates(task: CommonTask, date_only_due: bool, date_only_start: bool) -> CommonTask:
    due = restore_date_only(task.due, date_only_due)
    start = restore_date_only(task.start, date_only_start)
    if due == task.due and start == task.start:
        return task
    return dataclasses.replace(task, due=due, start=start)


def anchor_recurrence(task: CommonTask, today: date) -> CommonTask:
    """Give a recurring task without a due date an inferred due of ``today``.

    The local store cannot hold a recurrence rule without a DTSTART/DUE to
    hang it on.  The synthesized date is marked INFERRED so it is neither
    diffed nor pushed back to the other side.
    """
    if task.recurrence is None or not task.due.is_none:
        return task
    return dataclasses.replace(
        task, due=TaskDate.on(today), due_provenance=DueProvenance.INFERRED
    )


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


def recurrence_from_repeat(repeat_after: int | None, repeat_mode: int | None) -> Recurrence | None:
    mode = REPEAT_MODE_DEFAULT if repeat_mode is None else repeat_mode
    if mode == REPEAT_MODE_MONTHLY:
        return Recurrence(Frequency.MONTHLY, 1)
    if mode != REPEAT_MODE_DEFAULT:
        return None
    seconds = repeat_after or 0
    if seconds <= 0:
        return None
    if seconds % SECONDS_PER_WEEK == 0:
        return Recurrence(Frequency.WEEKLY, seconds // SECONDS_PER_WEEK)
    if seconds % SECONDS_PER_DAY == 0:
        return Recurrence(Frequency.DAILY, seconds // SECONDS_PER_DAY)
    return None


def recurrence_to_repeat(recurrence: Recurrence | None) -> tuple[int, int] | None:
    """Return ``(repeat_after, repeat_mode)``, or None when not representable."""
    if recurrence is None:
        return (0, REPEAT_MODE_DEFAULT)
    interval = max(recurrence.interval, 1)
    if recurrence.frequency is Frequency.DAILY:
        return (interval * SECONDS_PER_DAY, REPEAT_MODE_DEFAULT)
    if recurrence.frequency is Frequency.WEEKLY:
        return (interval * SECONDS_PER_WEEK, REPEAT_MODE_DEFAULT)
    if recurrence.frequency is Frequency.MONTHLY:
        return (0, REPEAT_MODE_MONTHLY)
    return None


# ---------------------------------------------------------------------------
# Priority
# ---------------------------------------------------------------------------


def canonical_priority(value: int | None) -> int:
    """Bucket an arbitrary iCalendar priority onto 0/1/5/9."""
    if not value or value < 0:
        return 0
    if value < 5:
        return 1
    if value == 5:
        return 5
    return 9


def priority_from_right(value: int | None) -> int:
    if not value or value <= 0:
        return 0
    if value == 1:
        return 9
    if value == 2:
        return 5
    return 1


def priority_to_right(value: int | None) -> int:
    bucket = canonical_priority(value)
    return {1: 3, 5: 2, 9: 1}.get(bucket, 0)
