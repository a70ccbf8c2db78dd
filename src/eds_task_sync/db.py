"""
SQLite state persistence: task mappings, watermarks and the current conflict set.
"""

import json
import logging
import sqlite3
import time
from datetime import datetime
from pathlib import Path

from eds_task_sync.models import DueProvenance
from eds_task_sync.models import ScopeId
from eds_task_sync.models import SyncRecord
from eds_task_sync.models import TaskPair
from eds_task_sync.normalize import conflict_field_diffs
from eds_task_sync.normalize import task_snapshot


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_text(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class MappingStore:
    """1:1 correspondence between left and right task ids, plus watermarks.

    ``left_id`` and ``right_id`` are each unique across the whole table, so
    an item can only ever be paired once.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def _record(row: sqlite3.Row) -> SyncRecord:
        return SyncRecord(
            left_id=row["left_id"],
            right_id=row["right_id"],
            scope=ScopeId(row["left_list_id"], row["right_project_id"]),
            last_seen_left=_from_text(row["last_seen_left"]),
            last_seen_right=_from_text(row["last_seen_right"]),
            date_only_due=bool(row["date_only_due"]),
            date_only_start=bool(row["date_only_start"]),
            due_provenance=(
                DueProvenance.INFERRED if row["inferred_due"] else DueProvenance.USER_SET
            ),
        )

    def load(self, scope: ScopeId | None = None) -> list[SyncRecord]:
        """Return every record, or only those belonging to ``scope``."""
        if scope is None:
            cursor = self.conn.execute("SELECT * FROM task_map ORDER BY id")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM task_map "
                "WHERE left_list_id = ? AND right_project_id = ? ORDER BY id",
                (scope.left_list_id, scope.right_project_id),
            )
        return [self._record(row) for row in cursor.fetchall()]

    def get_by_left(self, left_id: str) -> SyncRecord | None:
        row = self.conn.execute(
            "SELECT * FROM task_map WHERE left_id = ? LIMIT 1", (left_id,)
        ).fetchone()
        return self._record(row) if row else None

    def get_by_right(self, right_id: str) -> SyncRecord | None:
        row = self.conn.execute(
            "SELECT * FROM task_map WHERE right_id = ? LIMIT 1", (right_id,)
        ).fetchone()
        return self._record(row) if row else None

    def upsert(self, record: SyncRecord):
        """Insert or replace the mapping for either id, keeping the original created_at."""
        now = int(time.time())
        row = self.conn.execute(
            "SELECT MIN(created_at) FROM task_map WHERE left_id = ? OR right_id = ?",
            (record.left_id, record.right_id),
        ).fetchone()
        created_at = row[0] if row and row[0] is not None else now

        self.conn.execute(
            "DELETE FROM task_map WHERE left_id = ? OR right_id = ?",
            (record.left_id, record.right_id),
        )
        self.conn.execute(
            "INSERT INTO task_map "
            "(left_list_id, right_project_id, left_id, right_id, "
            " last_seen_left, last_seen_right, "
            " date_only_due, date_only_start, inferred_due, "
            " created_at, last_sync_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.scope.left_list_id,
                record.scope.right_project_id,
                record.left_id,
                record.right_id,
                _to_text(record.last_seen_left),
                _to_text(record.last_seen_right),
                int(record.date_only_due),
                int(record.date_only_start),
                int(record.inferred_due),
                created_at,
                now,
            ),
        )

    def update_watermarks(
        self, record: SyncRecord, last_seen_left: datetime | None, last_seen_right: datetime | None
    ):
        """Refresh the watermarks of an existing mapping."""
        record.last_seen_left = last_seen_left
        record.last_seen_right = last_seen_right
        self.conn.execute(
            "UPDATE task_map SET last_seen_left = ?, last_seen_right = ?, last_sync_at = ? "
            "WHERE left_id = ? AND right_id = ?",
            (
                _to_text(last_seen_left),
                _to_text(last_seen_right),
                int(time.time()),
                record.left_id,
                record.right_id,
            ),
        )

    def delete(self, record: SyncRecord):
        self.conn.execute(
            "DELETE FROM task_map WHERE left_id = ? AND right_id = ?",
            (record.left_id, record.right_id),
        )


class ConflictStore:
    """Current conflict set, rebuilt in full for each scope on every run."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def clear(self, scope: ScopeId):
        self.conn.execute(
            "DELETE FROM task_conflicts WHERE left_list_id = ? AND right_project_id = ?",
            (scope.left_list_id, scope.right_project_id),
        )

    def upsert(self, scope: ScopeId, pair: TaskPair):
        diffs = [
            {"field": d.field, "left": d.left_value, "right": d.right_value}
            for d in conflict_field_diffs(pair.left, pair.right)
        ]
        self.conn.execute(
            "INSERT OR REPLACE INTO task_conflicts "
            "(left_id, right_id, left_list_id, right_project_id, detected_at, "
            " left_json, right_json, diffs_json) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                pair.left.id,
                pair.right.id,
                scope.left_list_id,
                scope.right_project_id,
                int(time.time()),
                json.dumps(task_snapshot(pair.left), sort_keys=True),
                json.dumps(task_snapshot(pair.right), sort_keys=True),
                json.dumps(diffs),
            ),
        )

    def replace(self, scope: ScopeId, pairs: list[TaskPair]):
        self.clear(scope)
        for pair in pairs:
            self.upsert(scope, pair)

    def load(self, scope: ScopeId | None = None) -> list[dict]:
        if scope is None:
            cursor = self.conn.execute(
                "SELECT * FROM task_conflicts ORDER BY left_list_id, right_project_id, detected_at"
            )
        else:
            cursor = self.conn.execute(
                "SELECT * FROM task_conflicts "
                "WHERE left_list_id = ? AND right_project_id = ? ORDER BY detected_at",
                (scope.left_list_id, scope.right_project_id),
            )
        return [
            {
                "left_id": row["left_id"],
                "right_id": row["right_id"],
                "scope": ScopeId(row["left_list_id"], row["right_project_id"]),
                "detected_at": row["detected_at"],
                "left": json.loads(row["left_json"]),
                "right": json.loads(row["right_json"]),
                "diffs": json.loads(row["diffs_json"]),
            }
            for row in cursor.fetchall()
        ]


class StateDatabase:
    """Manages the SQLite state database for sync tracking."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self.mappings: MappingStore | None = None
        self.conflicts: ConflictStore | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self._init_schema()
        self.mappings = MappingStore(self.conn)
        self.conflicts = ConflictStore(self.conn)

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS task_map (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                left_list_id TEXT NOT NULL,
                right_project_id TEXT NOT NULL,
                left_id TEXT NOT NULL,
                right_id TEXT NOT NULL,
                last_seen_left TEXT,
                last_seen_right TEXT,
                date_only_due INTEGER NOT NULL DEFAULT 0,
                date_only_start INTEGER NOT NULL DEFAULT 0,
                inferred_due INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                last_sync_at INTEGER NOT NULL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_task_map_left ON task_map (left_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_task_map_right ON task_map (right_id);
            CREATE INDEX IF NOT EXISTS idx_task_map_scope
                ON task_map (left_list_id, right_project_id);

            CREATE TABLE IF NOT EXISTS task_conflicts (
                left_id TEXT NOT NULL,
                right_id TEXT NOT NULL,
                left_list_id TEXT NOT NULL,
                right_project_id TEXT NOT NULL,
                detected_at INTEGER NOT NULL,
                left_json TEXT NOT NULL,
                right_json TEXT NOT NULL,
                diffs_json TEXT NOT NULL,
                PRIMARY KEY (left_id, right_id)
            );
        """)
        self.conn.commit()

    def migrate_if_needed(self):
        """Add columns introduced after the first release to an existing task_map.

        Databases written before due-date inference existed lack the
        ``inferred_due`` flag; every existing mapping is taken as user-set.
        """
        logger = logging.getLogger(__name__)
        columns = {row["name"] for row in self.conn.execute("PRAGMA table_info(task_map)")}
        if "inferred_due" in columns:
            return
        logger.info("Migrating state database (adding inferred_due column)...")
        self.conn.execute(
            "ALTER TABLE task_map ADD COLUMN inferred_due INTEGER NOT NULL DEFAULT 0"
        )
        self.conn.commit()

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_status_all_scopes(db_path: Path) -> list:
    """
    Return aggregate rows for every scope recorded in the database.

    Each row exposes: left_list_id, right_project_id, count, inferred, conflicts,
    last_sync_at.  Returns an empty list when the DB file or its task_map table
    does not exist yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "task_map" not in tables:
            return []
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(task_map)")}
        inferred = "SUM(m.inferred_due)" if "inferred_due" in columns else "0"
        conflicts = (
            "(SELECT COUNT(*) FROM task_conflicts c "
            " WHERE c.left_list_id = m.left_list_id "
            " AND c.right_project_id = m.right_project_id)"
            if "task_conflicts" in tables
            else "0"
        )
        cursor = conn.execute(f"""
            SELECT
                m.left_list_id,
                m.right_project_id,
                COUNT(*)            AS count,
                {inferred}          AS inferred,
                {conflicts}         AS conflicts,
                MAX(m.last_sync_at) AS last_sync_at
            FROM task_map m
            GROUP BY m.left_list_id, m.right_project_id
            ORDER BY m.left_list_id, m.right_project_id
        """)
        return cursor.fetchall()
    finally:
        conn.close()
