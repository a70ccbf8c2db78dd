"""
Pure data models. No EDS, HTTP or sqlite imports.

The left side of every pairing is a local EDS task list, the right side is a
Vikunja project.  Everything the reconciler sees is expressed in the
side-agnostic types below.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/eds-task-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/eds-task-sync.conf"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TaskSyncError(Exception):
    """Base exception for task sync errors."""

    user_message = "Sync failed."


class NetworkError(TaskSyncError):
    user_message = "Could not reach the server. Check the connection and try again."


class RateLimitedError(TaskSyncError):
    user_message = "The server is busy right now. Try again in a moment."


class ServerError(TaskSyncError):
    user_message = "The server had trouble handling the request."

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.status = status


class NotAuthorizedError(TaskSyncError):
    user_message = "Authentication failed. Check the API token."


class NotFoundError(TaskSyncError):
    user_message = "The requested item was not found."


class LocalStoreAccessDeniedError(TaskSyncError):
    user_message = "Access to the local task list was denied."


class ConfigError(TaskSyncError):
    user_message = "The configuration is incomplete."


class ConflictsPresentError(TaskSyncError):
    """Raised instead of applying a plan that still carries unresolved conflicts."""

    user_message = "Unresolved conflicts were found; nothing was applied."

    def __init__(self, count: int):
        super().__init__(
            f"{count} unresolved conflict(s); pass --resolve-conflicts or --allow-conflicts"
        )
        self.count = count


# ---------------------------------------------------------------------------
# Task representation
# ---------------------------------------------------------------------------


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"


class DateKind(Enum):
    NONE = "none"
    DATE_ONLY = "date"
    INSTANT = "instant"


@dataclass(frozen=True)
class TaskDate:
    """A due/start value: nothing, a calendar date, or an exact instant.

    Instants are always timezone-aware; naive datetimes are taken as local time.
    """

    kind: DateKind = DateKind.NONE
    value: date | datetime | None = None

    @classmethod
    def on(cls, day: date) -> "TaskDate":
        if isinstance(day, datetime):
            day = day.date()
        return cls(DateKind.DATE_ONLY, day)

    @classmethod
    def at(cls, instant: datetime) -> "TaskDate":
        if instant.tzinfo is None:
            instant = instant.astimezone()
        return cls(DateKind.INSTANT, instant)

    @property
    def is_none(self) -> bool:
        return self.kind is DateKind.NONE

    @property
    def is_date_only(self) -> bool:
        return self.kind is DateKind.DATE_ONLY

    @property
    def is_instant(self) -> bool:
        return self.kind is DateKind.INSTANT


class DueProvenance(Enum):
    USER_SET = "user"
    INFERRED = "inferred"


class AlarmKind(Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


@dataclass(frozen=True)
class CommonAlarm:
    kind: AlarmKind
    absolute_time: datetime | None = None
    relative_offset_seconds: int | None = None
    relative_anchor: str | None = None


class Frequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Recurrence:
    frequency: Frequency
    interval: int = 1


@dataclass
class CommonTask:
    """Canonical task, rebuilt from live adapter data on every run."""

    side: Side
    id: str
    list_id: str
    title: str
    completed: bool = False
    due: TaskDate = field(default_factory=TaskDate)
    start: TaskDate = field(default_factory=TaskDate)
    modified_at: datetime | None = None
    alarms: list[CommonAlarm] = field(default_factory=list)
    recurrence: Recurrence | None = None
    priority: int | None = None
    notes: str | None = None
    flagged: bool = False
    completed_at: datetime | None = None
    due_provenance: DueProvenance = DueProvenance.USER_SET

    @property
    def due_is_date_only(self) -> bool:
        return self.due.is_date_only

    @property
    def start_is_date_only(self) -> bool:
        return self.start.is_date_only


# ---------------------------------------------------------------------------
# Scopes and persisted state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScopeId:
    """One (left list, right project) pairing."""

    left_list_id: str
    right_project_id: str

    def __str__(self) -> str:
        return f"{self.left_list_id} <-> {self.right_project_id}"


@dataclass(frozen=True)
class Scope:
    id: ScopeId
    left_title: str = ""
    right_title: str = ""

    @property
    def label(self) -> str:
        left = self.left_title or self.id.left_list_id
        right = self.right_title or self.id.right_project_id
        return f"{left} ↔ {right}"


@dataclass
class SyncRecord:
    """Persisted correspondence between one left task and one right task."""

    left_id: str
    right_id: str
    scope: ScopeId
    last_seen_left: datetime | None = None
    last_seen_right: datetime | None = None
    date_only_due: bool = False
    date_only_start: bool = False
    due_provenance: DueProvenance = DueProvenance.USER_SET

    @property
    def inferred_due(self) -> bool:
        return self.due_provenance is DueProvenance.INFERRED


@dataclass
class TaskPair:
    left: CommonTask
    right: CommonTask
    record: SyncRecord | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.left.id, self.right.id)


@dataclass(frozen=True)
class ConflictFieldDiff:
    field: str
    left_value: str
    right_value: str


@dataclass
class SyncPlan:
    """Everything one reconciliation pass decided for a scope."""

    create_left: list[CommonTask] = field(default_factory=list)
    create_right: list[CommonTask] = field(default_factory=list)
    update_left: list[TaskPair] = field(default_factory=list)
    update_right: list[TaskPair] = field(default_factory=list)
    delete_left: list[SyncRecord] = field(default_factory=list)
    delete_right: list[SyncRecord] = field(default_factory=list)
    ignored_missing_completed: list[SyncRecord] = field(default_factory=list)
    conflicts: list[TaskPair] = field(default_factory=list)
    mapped_pairs: list[TaskPair] = field(default_factory=list)
    auto_matched: list[TaskPair] = field(default_factory=list)
    ambiguous_keys: list[str] = field(default_factory=list)
    unknown_direction: list[TaskPair] = field(default_factory=list)
    stale_records: list[SyncRecord] = field(default_factory=list)

    @property
    def has_mutations(self) -> bool:
        return bool(
            self.create_left
            or self.create_right
            or self.update_left
            or self.update_right
            or self.delete_left
            or self.delete_right
            or self.auto_matched
            or self.stale_records
        )


class ConflictPolicy(Enum):
    NONE = "none"
    FAVOR_LEFT = "favor-left"
    FAVOR_RIGHT = "favor-right"
    LAST_WRITE_WINS = "last-write-wins"


@dataclass
class ConflictResolution:
    pair: TaskPair
    policy: ConflictPolicy
    winner: Side | None = None

    @property
    def resolved(self) -> bool:
        return self.winner is not None


# ---------------------------------------------------------------------------
# Configuration and run statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScopeConfig:
    """A configured pairing; either side may be given by id or by title."""

    name: str
    local_list: str
    project: str


@dataclass
class SyncConfig:
    """Configuration for a sync run."""

    api_base: str
    token: str
    state_db_path: Path
    scopes: list[ScopeConfig] = field(default_factory=list)
    dry_run: bool = False
    verbose: bool = False
    yes: bool = False  # Auto-confirm without prompting
    resolve_conflicts: ConflictPolicy = ConflictPolicy.NONE
    allow_conflicts: bool = False
    # (left_id, right_id) -> policy; beats resolve_conflicts for that pair
    overrides: dict[tuple[str, str], ConflictPolicy] = field(default_factory=dict)
    conflict_report_path: Path | None = None
    timeout: float = 30.0


@dataclass
class SyncStats:
    """Statistics for sync operation."""

    scopes: int = 0
    created_left: int = 0
    created_right: int = 0
    updated_left: int = 0
    updated_right: int = 0
    deleted_left: int = 0
    deleted_right: int = 0
    conflicts: int = 0
    errors: int = 0
