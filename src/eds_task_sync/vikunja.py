"""
Vikunja REST API client and the right-hand TaskStore built on it.
"""

import logging
import time
from typing import Any

import requests

from eds_task_sync.bridging import priority_from_right
from eds_task_sync.bridging import priority_to_right
from eds_task_sync.bridging import recurrence_from_repeat
from eds_task_sync.bridging import recurrence_to_repeat
from eds_task_sync.bridging import to_wire_timestamp
from eds_task_sync.models import AlarmKind
from eds_task_sync.models import CommonAlarm
from eds_task_sync.models import CommonTask
from eds_task_sync.models import NetworkError
from eds_task_sync.models import NotAuthorizedError
from eds_task_sync.models import NotFoundError
from eds_task_sync.models import RateLimitedError
from eds_task_sync.models import ScopeId
from eds_task_sync.models import ServerError
from eds_task_sync.models import Side
from eds_task_sync.models import TaskSyncError
from eds_task_sync.normalize import normalize_anchor
from eds_task_sync.normalize import parse_task_date
from eds_task_sync.normalize import parse_timestamp
from eds_task_sync.normalize import utc_stamp
from eds_task_sync.retry import DEFAULT_POLICY
from eds_task_sync.retry import RetryPolicy
from eds_task_sync.retry import call_with_retry
from eds_task_sync.retry import redact

logger = logging.getLogger(__name__)


def normalize_base(api_base: str) -> str:
    """Return the ``.../api/v1`` root for whatever base URL the user typed."""
    base = api_base.strip().rstrip("/")
    if base.endswith("/api/v1"):
        return base
    if base.endswith("/api"):
        return f"{base}/v1"
    return f"{base}/api/v1"


class VikunjaClient:
    """
    Low-level Vikunja REST API client.

    Handles authentication, retries and mapping HTTP failures to typed errors.
    """

    PER_PAGE = 50

    def __init__(
        self,
        api_base: str,
        token: str,
        timeout: float = 30.0,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.api_url = normalize_base(api_base)
        self.token = token
        self.timeout = timeout
        self.retry_policy = retry_policy
        self.logger = logging.getLogger("VikunjaClient")
        self._sleep = sleep

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
            }
        )

    # -------------------------------------------------------------------------
    # Core Request Methods
    # -------------------------------------------------------------------------

    def request(
        self, method: str, path: str, idempotent: bool = True, **kwargs
    ) -> requests.Response:
        """
        Make an authenticated request, retrying transient failures.

        Creates must pass ``idempotent=False`` so that only a 429 is retried.
        """
        url = f"{self.api_url}{path}"

        def send() -> requests.Response:
            try:
                response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.exceptions.Timeout as e:
                raise NetworkError(f"Request timed out: {method} {path}") from e
            except requests.exceptions.ConnectionError as e:
                raise NetworkError(f"Connection failed: {method} {path}: {e}") from e
            return self._handle_response(response, method, path)

        return call_with_retry(
            send,
            self.retry_policy,
            idempotent=idempotent,
            description=f"{method} {path}",
            sleep=self._sleep,
        )

    def _handle_response(
        self, response: requests.Response, method: str, path: str
    ) -> requests.Response:
        if response.ok:
            return response

        status = response.status_code
        error_body = redact(response.text[:500] if response.text else "", [self.token])
        where = f"{method} {path}"

        if status in (401, 403):
            raise NotAuthorizedError(f"Not authorized for {where} (HTTP {status})")
        if status == 404:
            raise NotFoundError(f"Not found: {where}")
        if status == 429:
            raise RateLimitedError(f"Rate limited: {where}")
        if status >= 500:
            raise ServerError(f"Server error {status} for {where}: {error_body}", status=status)
        raise TaskSyncError(f"API error {status} for {where}: {error_body}")

    def _json(self, response: requests.Response) -> Any:
        if not response.content:
            return {}
        return response.json()

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    def list_projects(self) -> list[dict]:
        return self._paginate("/projects")

    def create_project(self, title: str) -> dict:
        response = self.request("PUT", "/projects", idempotent=False, json={"title": title})
        return self._json(response)

    def list_tasks(self, project_id: int) -> list[dict]:
        return self._paginate(f"/projects/{project_id}/tasks")

    def get_task(self, task_id: int) -> dict:
        return self._json(self.request("GET", f"/tasks/{task_id}"))

    def create_task(self, project_id: int, payload: dict) -> dict:
        response = self.request(
            "PUT", f"/projects/{project_id}/tasks", idempotent=False, json=payload
        )
        return self._json(response)

    def update_task(self, task_id: int, payload: dict) -> dict:
        return self._json(self.request("POST", f"/tasks/{task_id}", json=payload))

    def delete_task(self, task_id: int):
        self.request("DELETE", f"/tasks/{task_id}")

    def _paginate(self, path: str) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            response = self.request(
                "GET", path, params={"page": page, "per_page": self.PER_PAGE}
            )
            batch = self._json(response) or []
            items.extend(batch)
            total_pages = response.headers.get("x-pagination-total-pages")
            if total_pages is not None:
                if page >= int(total_pages):
                    break
            elif len(batch) < self.PER_PAGE:
                break
            page += 1
        return items


# -----------------------------------------------------------------------------
# Wire conversion
# -----------------------------------------------------------------------------


def _alarm_from_wire(data: dict) -> CommonAlarm:
    absolute = parse_timestamp(data.get("reminder"))
    if absolute is not None:
        return CommonAlarm(AlarmKind.ABSOLUTE, absolute_time=absolute)
    return CommonAlarm(
        AlarmKind.RELATIVE,
        relative_offset_seconds=data.get("relative_period") or 0,
        relative_anchor=data.get("relative_to"),
    )


def _alarm_to_wire(alarm: CommonAlarm) -> dict:
    if alarm.kind is AlarmKind.ABSOLUTE and alarm.absolute_time is not None:
        return {"reminder": utc_stamp(alarm.absolute_time)}
    anchor = normalize_anchor(alarm.relative_anchor)
    if anchor == "none":
        anchor = "due_date"
    return {"relative_period": alarm.relative_offset_seconds or 0, "relative_to": anchor}


def task_from_wire(data: dict, project_id: str) -> CommonTask:
    return CommonTask(
        side=Side.RIGHT,
        id=str(data["id"]),
        list_id=str(data.get("project_id") or project_id),
        title=data.get("title") or "",
        completed=bool(data.get("done")),
        due=parse_task_date(data.get("due_date")),
        start=parse_task_date(data.get("start_date")),
        modified_at=parse_timestamp(data.get("updated")),
        alarms=[_alarm_from_wire(r) for r in data.get("reminders") or []],
        recurrence=recurrence_from_repeat(data.get("repeat_after"), data.get("repeat_mode")),
        priority=priority_from_right(data.get("priority")),
        notes=data.get("description") or None,
        flagged=bool(data.get("is_favorite")),
        completed_at=parse_timestamp(data.get("done_at")),
    )


def task_to_wire(task: CommonTask, project_id: str) -> dict:
    repeat = recurrence_to_repeat(task.recurrence)
    if repeat is None:
        logger.warning(
            f"{task.recurrence.frequency.value} recurrence of {task.title!r} "
            f"cannot be expressed in Vikunja; sending it without recurrence"
        )
        repeat = (0, 0)
    repeat_after, repeat_mode = repeat
    return {
        "project_id": int(project_id),
        "title": task.title,
        "done": task.completed,
        "due_date": to_wire_timestamp(task.due),
        "start_date": to_wire_timestamp(task.start),
        "reminders": [_alarm_to_wire(a) for a in task.alarms],
        "repeat_after": repeat_after,
        "repeat_mode": repeat_mode,
        "priority": priority_to_right(task.priority),
        "description": task.notes or "",
        "is_favorite": task.flagged,
    }


class VikunjaTaskStore:
    """Right-hand TaskStore: one Vikunja project per scope."""

    side = Side.RIGHT
    label = "VIKUNJA"
    requires_recurrence_anchor = False

    def __init__(self, client: VikunjaClient):
        self.client = client

    def list_collections(self) -> dict[str, str]:
        return {str(p["id"]): p.get("title") or "" for p in self.client.list_projects()}

    def create_collection(self, title: str) -> str:
        project = self.client.create_project(title)
        logger.info(f"Created Vikunja project {title!r} (id {project['id']})")
        return str(project["id"])

    def fetch_tasks(self, scope: ScopeId) -> list[CommonTask]:
        project_id = scope.right_project_id
        return [task_from_wire(t, project_id) for t in self.client.list_tasks(int(project_id))]

    def create_task(self, scope: ScopeId, task: CommonTask) -> CommonTask:
        project_id = scope.right_project_id
        data = self.client.create_task(int(project_id), task_to_wire(task, project_id))
        return task_from_wire(data, project_id)

    def update_task(self, scope: ScopeId, task_id: str, task: CommonTask) -> CommonTask:
        project_id = scope.right_project_id
        data = self.client.update_task(int(task_id), task_to_wire(task, project_id))
        return task_from_wire(data, project_id)

    def delete_task(self, scope: ScopeId, task_id: str) -> None:
        self.client.delete_task(int(task_id))
