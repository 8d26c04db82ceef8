"""
HTTP client for the ShiftCheck API, as used by a kiosk.

Handles:
- Tasklist resolution and working-state reads
- PIN-gated completion and signoff (a rejected PIN is a normal outcome)
- Evidence upload and rework resubmission
- Mapping transport failures and server errors to KioskError
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Optional

import httpx
import structlog

from shiftcheck_shared.schemas.roster import ActorRead, PinVerifyResponse
from shiftcheck_shared.schemas.submissions import (
    EvidenceUploadResponse,
    ResubmitResult,
    SubmissionRead,
    TaskDraft,
    WorkingStateRead,
)
from shiftcheck_shared.schemas.tasklists import TasklistsForDay

log = structlog.get_logger()

PIN_REJECTED = "PIN_REJECTED"


class KioskError(Exception):
    """A request the kiosk could not complete.

    `retryable` is set for transport failures and 5xx responses; validation
    refusals (422) carry the server's `code` and offending `task_ids`.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        task_ids: list[str] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.task_ids = task_ids or []
        self.retryable = retryable


class Denied:
    """Outcome of a PIN-gated call whose PIN the server rejected."""

    def __init__(self, message: str = "PIN not recognised"):
        self.message = message

    def __repr__(self) -> str:
        return f"Denied({self.message!r})"


def _detail(response: httpx.Response) -> Any:
    try:
        return response.json().get("detail")
    except (ValueError, AttributeError):
        return None


def _is_pin_rejected(response: httpx.Response) -> bool:
    if response.status_code != 403:
        return False
    detail = _detail(response)
    return isinstance(detail, dict) and detail.get("code") == PIN_REJECTED


class ShiftCheckClient:
    """Async client bound to one organization and one location."""

    def __init__(
        self,
        base_url: str,
        org_slug: str,
        location_id: uuid.UUID,
        token: str,
        verify_tls: bool = True,
        request_timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._org_slug = org_slug
        self._location_id = location_id
        self._token = token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            headers={"Authorization": f"Bearer {self._token}"},
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ShiftCheckClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- Paths ---

    @property
    def _org_path(self) -> str:
        return f"/api/v1/orgs/{self._org_slug}"

    def _tasklist_path(self, tasklist_id) -> str:
        return f"{self._org_path}/locations/{self._location_id}/tasklists/{tasklist_id}"

    # --- Transport ---

    async def _request(self, method: str, path: str, *, allow_pin_rejection: bool = False, **kwargs) -> httpx.Response:
        assert self._client, "client is not open"
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            log.warning("client.transport_error", method=method, path=path, error=str(exc))
            raise KioskError(f"Cannot reach server: {exc}", retryable=True) from exc

        if allow_pin_rejection and _is_pin_rejected(response):
            return response
        if response.status_code >= 500:
            log.warning("client.server_error", method=method, path=path, status=response.status_code)
            raise KioskError(
                f"Server error ({response.status_code})",
                status_code=response.status_code,
                retryable=True,
            )
        if response.status_code >= 400:
            detail = _detail(response)
            if isinstance(detail, dict):
                raise KioskError(
                    detail.get("message", str(detail)),
                    status_code=response.status_code,
                    code=detail.get("code"),
                    task_ids=detail.get("task_ids"),
                )
            raise KioskError(
                str(detail or response.reason_phrase),
                status_code=response.status_code,
            )
        return response

    # --- Reads ---

    async def list_tasklists(self, on_date: Optional[dt.date] = None) -> TasklistsForDay:
        params = {"date": on_date.isoformat()} if on_date else None
        response = await self._request(
            "GET", f"{self._org_path}/locations/{self._location_id}/tasklists", params=params
        )
        return TasklistsForDay.model_validate(response.json())

    async def get_state(self, tasklist_id, on_date: Optional[dt.date] = None) -> WorkingStateRead:
        params = {"date": on_date.isoformat()} if on_date else None
        response = await self._request("GET", f"{self._tasklist_path(tasklist_id)}/state", params=params)
        return WorkingStateRead.model_validate(response.json())

    # --- Authorization gate ---

    async def verify_pin(self, pin: str) -> ActorRead | None:
        response = await self._request("POST", f"{self._org_path}/pin/verify", json={"pin": pin})
        return PinVerifyResponse.model_validate(response.json()).actor

    # --- Writes ---

    async def complete_task(
        self,
        tasklist_id,
        task_id,
        pin: str,
        draft: TaskDraft,
        on_date: Optional[dt.date] = None,
    ) -> WorkingStateRead | Denied:
        body: dict[str, Any] = {"pin": pin, "draft": draft.model_dump(mode="json")}
        if on_date:
            body["date"] = on_date.isoformat()
        response = await self._request(
            "POST",
            f"{self._tasklist_path(tasklist_id)}/tasks/{task_id}/complete",
            json=body,
            allow_pin_rejection=True,
        )
        if _is_pin_rejected(response):
            return Denied(_detail(response).get("message", "PIN not recognised"))
        return WorkingStateRead.model_validate(response.json())

    async def sign_off(
        self,
        tasklist_id,
        pin: str,
        drafts: dict[str, TaskDraft] | None = None,
        on_date: Optional[dt.date] = None,
    ) -> SubmissionRead | Denied:
        body: dict[str, Any] = {
            "pin": pin,
            "drafts": {k: v.model_dump(mode="json") for k, v in (drafts or {}).items()},
        }
        if on_date:
            body["date"] = on_date.isoformat()
        response = await self._request(
            "POST",
            f"{self._tasklist_path(tasklist_id)}/signoff",
            json=body,
            allow_pin_rejection=True,
        )
        if _is_pin_rejected(response):
            return Denied(_detail(response).get("message", "PIN not recognised"))
        return SubmissionRead.model_validate(response.json())

    async def upload_evidence(
        self,
        tasklist_id,
        task_id,
        data: bytes,
        filename: str,
        content_type: str | None = None,
        submission_id=None,
    ) -> EvidenceUploadResponse:
        form = {"tasklist_id": str(tasklist_id), "task_id": str(task_id)}
        if submission_id is not None:
            form["submission_id"] = str(submission_id)
        response = await self._request(
            "POST",
            f"{self._org_path}/evidence/",
            data=form,
            files={"file": (filename, data, content_type or "application/octet-stream")},
        )
        return EvidenceUploadResponse.model_validate(response.json())

    async def resubmit(self, submission_id) -> ResubmitResult:
        response = await self._request("POST", f"{self._org_path}/submissions/{submission_id}/resubmit")
        return ResubmitResult.model_validate(response.json())
