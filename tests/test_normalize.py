"""
Unit tests for the comparison signatures in eds_task_sync.normalize.
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from eds_task_sync.models import AlarmKind
from eds_task_sync.models import CommonAlarm
from eds_task_sync.models import DueProvenance
from eds_task_sync.models import Frequency
from eds_task_sync.models import Recurrence
from eds_task_sync.models import TaskDate
from eds_task_sync.normalize import alarm_comparable_set
from eds_task_sync.normalize import alarm_signature
from eds_task_sync.normalize import conflict_field_diffs
from eds_task_sync.normalize import match_key
from eds_task_sync.normalize import normalize_anchor
from eds_task_sync.normalize import normalize_due
from eds_task_sync.normalize import normalize_due_for_match
from eds_task_sync.normalize import parse_task_date
from eds_task_sync.normalize import recurrence_signature
from eds_task_sync.normalize import task_snapshot
from eds_task_sync.normalize import tasks_differ
from tests.conftest import left_task
from tests.conftest import right_task

UTC = timezone.utc


class TestNormalizeDue:
    @pytest.mark.parametrize("raw", [None, "", "   ", "0001-01-01T00:00:00Z", "0001-01-01T00:00:00+00:00"])
    def test_empty_and_zero_values_are_none(self, raw):
        assert normalize_due(raw) == "none"

    def test_real_value_passes_through(self):
        assert normalize_due("2026-01-20T10:00:00Z") == "2026-01-20T10:00:00Z"

    def test_utc_midnight_collapses_to_date(self):
        assert normalize_due_for_match("2026-01-20T00:00:00Z") == "2026-01-20"
        assert normalize_due_for_match("2026-01-20") == "2026-01-20"

    def test_other_instants_are_canonical_utc(self):
        assert normalize_due_for_match("2026-01-20T10:30:00+01:00") == "2026-01-20T09:30:00Z"

    def test_accepts_task_dates(self):
        assert normalize_due_for_match(TaskDate()) == "none"
        assert normalize_due_for_match(TaskDate.on(date(2026, 1, 20))) == "2026-01-20"

    def test_malformed_value_raises(self):
        with pytest.raises(ValueError):
            parse_task_date("next tuesday")


class TestMatchKey:
    def test_title_is_trimmed_and_lowercased(self):
        task = left_task("L1", "  Buy Milk ")
        assert match_key(task) == "buy milk|0|none"

    def test_completion_and_due_are_part_of_the_key(self):
        due = TaskDate.at(datetime(2026, 1, 20, tzinfo=UTC))
        task = left_task("L1", "Milk", completed=True, due=due)
        assert match_key(task) == "milk|1|2026-01-20"


class TestAlarms:
    def test_relative_alarm_resolves_against_due_instant(self):
        due = datetime(2026, 1, 20, 10, 0, tzinfo=UTC)
        relative = left_task(
            "L1",
            due=TaskDate.at(due),
            alarms=[CommonAlarm(AlarmKind.RELATIVE, relative_offset_seconds=-900, relative_anchor="due_date")],
        )
        absolute = right_task(
            "R1",
            due=TaskDate.at(due),
            alarms=[CommonAlarm(AlarmKind.ABSOLUTE, absolute_time=due - timedelta(minutes=15))],
        )
        assert alarm_comparable_set(relative) == alarm_comparable_set(absolute)
        assert not tasks_differ(relative, absolute)

    def test_relative_alarm_without_instant_anchor_stays_relative(self):
        task = left_task(
            "L1",
            due=TaskDate.on(date(2026, 1, 20)),
            alarms=[CommonAlarm(AlarmKind.RELATIVE, relative_offset_seconds=-900, relative_anchor="due")],
        )
        assert alarm_comparable_set(task) == frozenset({("rel", "due_date", -900)})

    def test_start_anchor_uses_start(self):
        start = datetime(2026, 1, 19, 8, 0, tzinfo=UTC)
        task = left_task(
            "L1",
            start=TaskDate.at(start),
            alarms=[CommonAlarm(AlarmKind.RELATIVE, relative_offset_seconds=0, relative_anchor="start_date")],
        )
        assert alarm_comparable_set(task) == frozenset({("abs", "2026-01-19T08:00:00Z")})

    def test_anchor_aliases(self):
        assert normalize_anchor("Due") == normalize_anchor("due_date") == "due_date"
        assert normalize_anchor("start") == "start_date"
        assert normalize_anchor(None) == "none"

    def test_signature_ignores_order(self):
        absolute = CommonAlarm(
            AlarmKind.ABSOLUTE, absolute_time=datetime(2026, 1, 19, 8, 0, tzinfo=UTC)
        )
        relative = CommonAlarm(
            AlarmKind.RELATIVE, relative_offset_seconds=-600, relative_anchor="due"
        )
        assert alarm_signature([absolute, relative]) == alarm_signature([relative, absolute])
        assert alarm_signature([relative]) == "relative|due_date||-600"


class TestTasksDiffer:
    def test_symmetric(self):
        pairs = [
            (left_task("L1", "Milk"), right_task("R1", "milk")),
            (left_task("L1", "Milk"), right_task("R1", "Milk", completed=True)),
            (left_task("L1", "Milk", priority=1), right_task("R1", "Milk")),
            (left_task("L1", "Milk", notes="2l"), right_task("R1", "Milk", flagged=True)),
        ]
        for a, b in pairs:
            assert tasks_differ(a, b) == tasks_differ(b, a)

    def test_ids_and_timestamps_are_ignored(self):
        a = left_task("L1", "Milk", modified_at=datetime(2026, 1, 1, tzinfo=UTC))
        b = right_task("R9", "Milk", modified_at=datetime(2026, 2, 1, tzinfo=UTC))
        assert not tasks_differ(a, b)

    def test_ignore_due(self):
        a = left_task("L1", "Milk", due=TaskDate.on(date(2026, 1, 20)))
        b = right_task("R1", "Milk")
        assert tasks_differ(a, b)
        assert not tasks_differ(a, b, ignore_due=True)

    def test_recurrence_counts(self):
        a = left_task("L1", "Plants", recurrence=Recurrence(Frequency.WEEKLY, 1))
        b = right_task("R1", "Plants", recurrence=Recurrence(Frequency.WEEKLY, 2))
        assert tasks_differ(a, b)
        assert recurrence_signature(a.recurrence) == "weekly|1"
        assert recurrence_signature(None) == "none"


class TestConflictFieldDiffs:
    def test_title_and_due_only(self):
        """Unrelated fields such as start are omitted."""
        a = left_task("L1", "Milk", due=TaskDate.on(date(2026, 1, 20)))
        b = right_task("R1", "Oat milk", due=TaskDate.on(date(2026, 1, 21)))
        diffs = conflict_field_diffs(a, b)
        assert [d.field for d in diffs] == ["title", "due"]
        assert (diffs[0].left_value, diffs[0].right_value) == ("Milk", "Oat milk")

    def test_date_only_flag_reported_when_it_differs(self):
        a = left_task("L1", "Milk", due=TaskDate.on(date(2026, 1, 20)))
        b = right_task("R1", "Milk", due=TaskDate.at(datetime(2026, 1, 20, 9, 0, tzinfo=UTC)))
        assert [d.field for d in conflict_field_diffs(a, b)] == ["due", "dueDateOnly"]

    def test_identical_tasks_have_no_diffs(self):
        assert conflict_field_diffs(left_task("L1", "Milk"), right_task("R1", "Milk")) == []


class TestSnapshot:
    def test_snapshot_is_json_ready(self):
        task = left_task(
            "L1",
            "Milk",
            due=TaskDate.on(date(2026, 1, 20)),
            due_provenance=DueProvenance.INFERRED,
            recurrence=Recurrence(Frequency.DAILY, 2),
        )
        snap = task_snapshot(task)
        assert snap["due"] == "2026-01-20"
        assert snap["due_date_only"] is True
        assert snap["due_inferred"] is True
        assert snap["recurrence"] == {"frequency": "daily", "interval": 2}
        assert snap["modified_at"] == "2026-03-01T09:00:00Z"
