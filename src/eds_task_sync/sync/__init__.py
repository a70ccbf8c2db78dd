"""
TaskSynchronizer: thin orchestrator that delegates to sync submodules.
"""

import logging

from eds_task_sync.db import StateDatabase
from eds_task_sync.models import LocalStoreAccessDeniedError
from eds_task_sync.models import NotAuthorizedError
from eds_task_sync.models import Scope
from eds_task_sync.models import SyncConfig
from eds_task_sync.models import SyncPlan
from eds_task_sync.models import SyncStats
from eds_task_sync.models import TaskSyncError
from eds_task_sync.report import write_conflict_report
from eds_task_sync.store import TaskStore
from eds_task_sync.sync.apply import apply_plan
from eds_task_sync.sync.reconcile import Reconciler
from eds_task_sync.sync.resolve import ensure_apply_allowed
from eds_task_sync.sync.resolve import resolve_conflicts
from eds_task_sync.sync.scopes import resolve_scopes
from eds_task_sync.vikunja import VikunjaClient
from eds_task_sync.vikunja import VikunjaTaskStore


class TaskSynchronizer:
    """Main synchronization engine."""

    def __init__(
        self,
        config: SyncConfig,
        left_store: TaskStore | None = None,
        right_store: TaskStore | None = None,
    ):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.stats = SyncStats()
        self.left_store = left_store
        self.right_store = right_store

    def _connect_stores(self):
        if self.left_store is None:
            self.logger.info("Connecting to Evolution Data Server...")
            # Imported here so the engine works without PyGObject when stores are injected
            from eds_task_sync.eds_client import EDSTaskStore

            self.left_store = EDSTaskStore()
        if self.right_store is None:
            client = VikunjaClient(
                self.config.api_base, self.config.token, timeout=self.config.timeout
            )
            self.right_store = VikunjaTaskStore(client)

    def _plan_scope(self, reconciler: Reconciler, scope: Scope) -> SyncPlan | None:
        try:
            left = self.left_store.fetch_tasks(scope.id)
            right = self.right_store.fetch_tasks(scope.id)
        except (NotAuthorizedError, LocalStoreAccessDeniedError):
            raise
        except TaskSyncError as e:
            self.logger.error(f"[{scope.label}] Could not read tasks, skipping scope: {e}")
            self.stats.errors += 1
            return None
        return reconciler.plan(scope, left, right)

    def run(self) -> SyncStats:
        """Plan every scope, then apply them if no unresolved conflict blocks the run."""
        self._connect_stores()

        with StateDatabase(self.config.state_db_path) as state_db:
            state_db.migrate_if_needed()

            scopes = resolve_scopes(
                self.config.scopes,
                self.left_store,
                self.right_store,
                create_missing=not self.config.dry_run,
            )
            reconciler = Reconciler(state_db.mappings, state_db.conflicts)

            planned = []
            report_entries = []
            for scope in scopes:
                plan = self._plan_scope(reconciler, scope)
                if plan is None:
                    continue
                resolutions = resolve_conflicts(
                    plan, self.config.resolve_conflicts, self.config.overrides
                )
                if not self.config.dry_run:
                    reconciler.record_conflicts(scope, plan)
                    state_db.commit()
                self.stats.conflicts += len(plan.conflicts)
                report_entries.extend((scope, r) for r in resolutions)
                planned.append((scope, plan))

            if self.config.conflict_report_path is not None:
                write_conflict_report(
                    self.config.conflict_report_path, report_entries, [self.config.token]
                )
                self.logger.info(
                    f"Conflict report written to {self.config.conflict_report_path}"
                )

            ensure_apply_allowed(
                [resolution for _, resolution in report_entries], self.config.allow_conflicts
            )

            for scope, plan in planned:
                self.logger.info(f"[{scope.label}] Applying...")
                apply_plan(
                    self.config,
                    self.stats,
                    self.logger,
                    scope,
                    plan,
                    self.left_store,
                    self.right_store,
                    state_db,
                )
            self.stats.scopes = len(planned)

        return self.stats
