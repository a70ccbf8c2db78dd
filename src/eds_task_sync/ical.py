"""
VTODO text <-> CommonTask conversion on top of libical (ICalGLib).

Only strings go in and out, so this works without an EDS daemon;
``eds_client`` moves the strings to and from the task lists.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timezone

import gi

gi.require_version("ICalGLib", "3.0")
from gi.repository import ICalGLib

from eds_task_sync.bridging import canonical_priority
from eds_task_sync.models import AlarmKind
from eds_task_sync.models import CommonAlarm
from eds_task_sync.models import CommonTask
from eds_task_sync.models import Frequency
from eds_task_sync.models import Recurrence
from eds_task_sync.models import Side
from eds_task_sync.models import TaskDate
from eds_task_sync.normalize import normalize_anchor

logger = logging.getLogger(__name__)

FLAGGED_CATEGORY = "FLAGGED"

# Properties rewritten on every update; anything else on an existing VTODO is kept.
_OWNED_PROPERTIES = [
    ICalGLib.PropertyKind.UID_PROPERTY,
    ICalGLib.PropertyKind.SUMMARY_PROPERTY,
    ICalGLib.PropertyKind.DESCRIPTION_PROPERTY,
    ICalGLib.PropertyKind.STATUS_PROPERTY,
    ICalGLib.PropertyKind.COMPLETED_PROPERTY,
    ICalGLib.PropertyKind.PERCENTCOMPLETE_PROPERTY,
    ICalGLib.PropertyKind.DUE_PROPERTY,
    ICalGLib.PropertyKind.DTSTART_PROPERTY,
    ICalGLib.PropertyKind.PRIORITY_PROPERTY,
    ICalGLib.PropertyKind.RRULE_PROPERTY,
    ICalGLib.PropertyKind.DTSTAMP_PROPERTY,
    ICalGLib.PropertyKind.LASTMODIFIED_PROPERTY,
]

_FREQUENCIES = {
    "DAILY": Frequency.DAILY,
    "WEEKLY": Frequency.WEEKLY,
    "MONTHLY": Frequency.MONTHLY,
    "YEARLY": Frequency.YEARLY,
}


# ---------------------------------------------------------------------------
# Component helpers
# ---------------------------------------------------------------------------


def _find_vtodo(text: str) -> tuple[ICalGLib.Component, ICalGLib.Component]:
    """Return ``(root, vtodo)`` for a bare VTODO or one wrapped in a VCALENDAR."""
    root = ICalGLib.Component.new_from_string(text)
    vtodo = None
    if root is not None:
        if root.isa() == ICalGLib.ComponentKind.VTODO_COMPONENT:
            vtodo = root
        elif root.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
            vtodo = root.get_first_component(ICalGLib.ComponentKind.VTODO_COMPONENT)
    if vtodo is None:
        raise ValueError("No VTODO component found")
    return root, vtodo


def _properties(component: ICalGLib.Component, kind: ICalGLib.PropertyKind):
    prop = component.get_first_property(kind)
    while prop:
        yield prop
        prop = component.get_next_property(kind)


def _remove_all_properties(component: ICalGLib.Component, kind: ICalGLib.PropertyKind):
    prop = component.get_first_property(kind)
    while prop:
        component.remove_property(prop)
        prop = component.get_first_property(kind)


def _remove_all_components(component: ICalGLib.Component, kind: ICalGLib.ComponentKind):
    sub = component.get_first_component(kind)
    while sub:
        component.remove_component(sub)
        sub = component.get_first_component(kind)


def _categories(component: ICalGLib.Component) -> list[str]:
    values = []
    for prop in _properties(component, ICalGLib.PropertyKind.CATEGORIES_PROPERTY):
        values.extend(c.strip() for c in (prop.get_categories() or "").split(",") if c.strip())
    return values


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


def _zone(tzid: str | None, root: ICalGLib.Component):
    if not tzid:
        return None
    if root.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        zone = root.get_timezone(tzid)
        if zone is not None:
            return zone
    zone = ICalGLib.Timezone.get_builtin_timezone_from_tzid(tzid)
    if zone is not None:
        return zone
    # libical prefixes its builtin zones, e.g. /freeassociation.sourceforge.net/Europe/Berlin
    location = "/".join(tzid.strip("/").split("/")[-2:])
    zone = ICalGLib.Timezone.get_builtin_timezone(location)
    if zone is None:
        logger.debug(f"Unknown TZID {tzid!r}, treating time as local")
    return zone


def _instant(prop: ICalGLib.Property, value: ICalGLib.Time, root: ICalGLib.Component) -> datetime:
    moment = datetime(
        value.get_year(),
        value.get_month(),
        value.get_day(),
        value.get_hour(),
        value.get_minute(),
        value.get_second(),
    )
    if value.is_utc():
        return moment.replace(tzinfo=timezone.utc)
    param = prop.get_first_parameter(ICalGLib.ParameterKind.TZID_PARAMETER)
    zone = _zone(param.get_tzid() if param else None, root)
    if zone is None:
        return moment
    return datetime.fromtimestamp(value.as_timet_with_zone(zone), timezone.utc)


def _task_date(prop, value, root) -> TaskDate:
    if value is None or value.is_null_time():
        return TaskDate()
    if value.is_date():
        return TaskDate.on(date(value.get_year(), value.get_month(), value.get_day()))
    return TaskDate.at(_instant(prop, value, root))


def _timestamp(prop, value, root) -> datetime | None:
    parsed = _task_date(prop, value, root)
    if parsed.is_none:
        return None
    if parsed.is_date_only:
        return datetime(parsed.value.year, parsed.value.month, parsed.value.day).astimezone()
    if parsed.value.tzinfo is None:
        return parsed.value.astimezone()
    return parsed.value


def format_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _utc_time(value: datetime) -> ICalGLib.Time:
    return ICalGLib.Time.new_from_string(format_utc(value))


def _date_property(name: str, value: TaskDate) -> ICalGLib.Property | None:
    if value.is_none:
        return None
    if value.is_date_only:
        day: date = value.value
        return ICalGLib.Property.new_from_string(f"{name};VALUE=DATE:{day.strftime('%Y%m%d')}")
    return ICalGLib.Property.new_from_string(f"{name}:{format_utc(value.value)}")


# ---------------------------------------------------------------------------
# Recurrence and alarms
# ---------------------------------------------------------------------------


def _parse_rrule(prop: ICalGLib.Property) -> Recurrence | None:
    rule = prop.get_rrule()
    if rule is None:
        return None
    frequency = _FREQUENCIES.get(ICalGLib.Recurrence.frequency_to_string(rule.get_freq()))
    if frequency is None:
        return None
    return Recurrence(frequency, max(rule.get_interval(), 1))


def _rrule_property(recurrence: Recurrence) -> ICalGLib.Property:
    rule = f"FREQ={recurrence.frequency.value.upper()}"
    if recurrence.interval > 1:
        rule += f";INTERVAL={recurrence.interval}"
    return ICalGLib.Property.new_rrule(ICalGLib.Recurrence.new_from_string(rule))


def _parse_alarm(alarm: ICalGLib.Component, root: ICalGLib.Component) -> CommonAlarm | None:
    prop = alarm.get_first_property(ICalGLib.PropertyKind.TRIGGER_PROPERTY)
    if prop is None:
        return None
    trigger = prop.get_trigger()
    moment = trigger.get_time()
    if moment is not None and not moment.is_null_time():
        return CommonAlarm(AlarmKind.ABSOLUTE, absolute_time=_timestamp(prop, moment, root))
    related = prop.get_first_parameter(ICalGLib.ParameterKind.RELATED_PARAMETER)
    from_end = related is not None and related.get_related() == ICalGLib.ParameterRelated.END
    return CommonAlarm(
        AlarmKind.RELATIVE,
        relative_offset_seconds=trigger.get_duration().as_int(),
        relative_anchor="due_date" if from_end else "start_date",
    )


def _alarm_component(alarm: CommonAlarm, title: str) -> ICalGLib.Component:
    component = ICalGLib.Component.new_valarm()
    component.add_property(ICalGLib.Property.new_from_string("ACTION:DISPLAY"))
    component.add_property(ICalGLib.Property.new_description(title))
    if alarm.kind is AlarmKind.ABSOLUTE and alarm.absolute_time is not None:
        trigger = f"TRIGGER;VALUE=DATE-TIME:{format_utc(alarm.absolute_time)}"
    else:
        related = "START" if normalize_anchor(alarm.relative_anchor) == "start_date" else "END"
        offset = ICalGLib.Duration.new_from_int(alarm.relative_offset_seconds or 0)
        trigger = f"TRIGGER;RELATED={related}:{offset.as_ical_string()}"
    component.add_property(ICalGLib.Property.new_from_string(trigger))
    return component


# ---------------------------------------------------------------------------
# VTODO
# ---------------------------------------------------------------------------


def parse_vtodo(text: str, list_id: str) -> CommonTask:
    """Build a CommonTask from a VTODO (bare or wrapped in a VCALENDAR)."""
    root, vtodo = _find_vtodo(text)
    kind = ICalGLib.PropertyKind
    task = CommonTask(side=Side.LEFT, id="", list_id=list_id, title="")

    prop = vtodo.get_first_property(kind.UID_PROPERTY)
    task.id = (prop.get_uid() if prop else "") or ""
    if not task.id:
        raise ValueError("VTODO has no UID")

    prop = vtodo.get_first_property(kind.SUMMARY_PROPERTY)
    task.title = (prop.get_summary() if prop else "") or ""
    prop = vtodo.get_first_property(kind.DESCRIPTION_PROPERTY)
    task.notes = (prop.get_description() if prop else None) or None

    prop = vtodo.get_first_property(kind.COMPLETED_PROPERTY)
    if prop:
        task.completed_at = _timestamp(prop, prop.get_completed(), root)
    prop = vtodo.get_first_property(kind.STATUS_PROPERTY)
    status = (prop.get_value_as_string() or "").upper() if prop else ""
    task.completed = status == "COMPLETED" or task.completed_at is not None

    prop = vtodo.get_first_property(kind.DUE_PROPERTY)
    if prop:
        task.due = _task_date(prop, prop.get_due(), root)
    prop = vtodo.get_first_property(kind.DTSTART_PROPERTY)
    if prop:
        task.start = _task_date(prop, prop.get_dtstart(), root)

    prop = vtodo.get_first_property(kind.PRIORITY_PROPERTY)
    if prop:
        task.priority = canonical_priority(prop.get_priority())
    prop = vtodo.get_first_property(kind.RRULE_PROPERTY)
    if prop:
        task.recurrence = _parse_rrule(prop)

    task.flagged = FLAGGED_CATEGORY in (c.upper() for c in _categories(vtodo))

    alarm = vtodo.get_first_component(ICalGLib.ComponentKind.VALARM_COMPONENT)
    while alarm:
        parsed = _parse_alarm(alarm, root)
        if parsed is not None:
            task.alarms.append(parsed)
        alarm = vtodo.get_next_component(ICalGLib.ComponentKind.VALARM_COMPONENT)

    prop = vtodo.get_first_property(kind.LASTMODIFIED_PROPERTY)
    last_modified = _timestamp(prop, prop.get_lastmodified(), root) if prop else None
    prop = vtodo.get_first_property(kind.DTSTAMP_PROPERTY)
    dtstamp = _timestamp(prop, prop.get_dtstamp(), root) if prop else None
    task.modified_at = last_modified or dtstamp
    return task


def build_vtodo(
    task: CommonTask,
    uid: str,
    existing: str | None = None,
    now: datetime | None = None,
) -> str:
    """Render ``task`` as a VTODO.

    When ``existing`` is given, properties this tool does not manage (extra
    categories, X- properties, attendees, ...) are carried over.
    """
    now = now or datetime.now(timezone.utc)
    if existing:
        _, vtodo = _find_vtodo(existing)
        vtodo = vtodo.clone()
        for kind in _OWNED_PROPERTIES:
            _remove_all_properties(vtodo, kind)
        _remove_all_components(vtodo, ICalGLib.ComponentKind.VALARM_COMPONENT)
        others = [c for c in _categories(vtodo) if c.upper() != FLAGGED_CATEGORY]
        _remove_all_properties(vtodo, ICalGLib.PropertyKind.CATEGORIES_PROPERTY)
    else:
        vtodo = ICalGLib.Component.new_vtodo()
        others = []

    vtodo.add_property(ICalGLib.Property.new_uid(uid))
    vtodo.add_property(ICalGLib.Property.new_dtstamp(_utc_time(now)))
    vtodo.add_property(ICalGLib.Property.new_lastmodified(_utc_time(now)))
    vtodo.add_property(ICalGLib.Property.new_summary(task.title))
    if task.notes:
        vtodo.add_property(ICalGLib.Property.new_description(task.notes))
    if task.completed:
        vtodo.add_property(ICalGLib.Property.new_from_string("STATUS:COMPLETED"))
        vtodo.add_property(ICalGLib.Property.new_percentcomplete(100))
        vtodo.add_property(ICalGLib.Property.new_completed(_utc_time(task.completed_at or now)))
    else:
        vtodo.add_property(ICalGLib.Property.new_from_string("STATUS:NEEDS-ACTION"))

    for name, value in (("DTSTART", task.start), ("DUE", task.due)):
        prop = _date_property(name, value)
        if prop is not None:
            vtodo.add_property(prop)
    if task.priority:
        vtodo.add_property(ICalGLib.Property.new_priority(canonical_priority(task.priority)))
    if task.recurrence is not None:
        vtodo.add_property(_rrule_property(task.recurrence))

    if task.flagged:
        vtodo.add_property(ICalGLib.Property.new_categories(FLAGGED_CATEGORY))
    for category in others:
        vtodo.add_property(ICalGLib.Property.new_categories(category))

    for alarm in task.alarms:
        vtodo.add_component(_alarm_component(alarm, task.title))
    return vtodo.as_ical_string()
