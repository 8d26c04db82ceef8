"""
Kiosk orchestrator.

Coordinates the API client, working-state store, PIN pad and change-cue
listener. Handles lifecycle: startup, shutdown, signal handling.

Completion and signoff both follow the same shape: check eligibility
locally, open the PIN pad, and only write once the server accepts the PIN.
The store is then reconciled from the server's answer.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from shiftcheck_shared.schemas.submissions import ResubmitResult, SubmissionRead, WorkingStateRead

from .client import Denied, KioskError, ShiftCheckClient
from .config import KioskConfig
from .pin_pad import PinPad
from .sse_listener import CueListener
from .working_state import Debouncer, WorkingStateStore

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0


@dataclass
class PendingAction:
    kind: str  # "complete" | "signoff"
    tasklist_id: str
    task_id: Optional[str] = None


class Kiosk:
    """One shared device at one location."""

    def __init__(
        self,
        config: KioskConfig,
        client: ShiftCheckClient | None = None,
        listener: CueListener | None = None,
    ):
        device = config.kiosk
        token = device.token
        if client is None or listener is None:
            if not token:
                raise KioskError(f"Device token missing: set {device.token_env}")

        self._config = config
        self._client = client or ShiftCheckClient(
            base_url=config.server.url,
            org_slug=device.org_slug,
            location_id=device.location_id,
            token=token,
            verify_tls=config.server.verify_tls,
            request_timeout=config.server.request_timeout_seconds,
        )
        self._listener = listener or CueListener(
            base_url=config.server.url,
            org_slug=device.org_slug,
            token=token,
            location_id=device.location_id,
            tables=device.watch_tables,
            heartbeat_timeout=config.server.sse_heartbeat_timeout_seconds,
            verify_tls=config.server.verify_tls,
        )
        self.store = WorkingStateStore()
        self.pin_pad = PinPad(max_length=config.pin.max_length)
        self.pending: PendingAction | None = None
        self.message: Optional[str] = None
        self.date: Optional[dt.date] = None
        self._debouncer = Debouncer(self.refresh, config.refresh.debounce_ms / 1000)
        self._refresh_lock = asyncio.Lock()
        self._running = False
        self._shutdown_event = asyncio.Event()

    # --- Lifecycle ---

    async def start(self) -> None:
        log.info("kiosk.starting", device=self._config.kiosk.name, org=self._config.kiosk.org_slug)
        await self._client.open()
        await self.refresh()
        self._listener.on_cue(self.request_refresh)
        await self._listener.start()
        self._running = True
        log.info("kiosk.started", tasklists=len(self.store.tasklists()))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        log.info("kiosk.stopping")
        await self._listener.stop()
        await self._debouncer.cancel()
        await self._client.close()
        log.info("kiosk.stopped")

    async def run_forever(self) -> None:
        """Run until shutdown signal."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)

    # --- Refresh ---

    def request_refresh(self) -> None:
        """Debounced refresh, as triggered by change cues."""
        self._debouncer.trigger()

    async def refresh(self) -> None:
        """Re-resolve today's tasklists and reconcile each one from the server."""
        async with self._refresh_lock:
            day = await self._client.list_tasklists()
            self.date = dt.date.fromisoformat(day.date)
            self.store.seed(day.tasklists)
            for tasklist in day.tasklists:
                state = await self._client.get_state(tasklist.id, self.date)
                self.store.reconcile(state)
            log.info("kiosk.refresh", date=day.date, tasklists=len(day.tasklists))

    async def _refresh_tasklist(self, tasklist_id) -> None:
        self.store.reconcile(await self._client.get_state(tasklist_id, self.date))

    # --- Worker edits ---

    def edit(self, tasklist_id, task_id, **changes) -> None:
        self.store.edit(tasklist_id, task_id, **changes)

    async def attach_photo(
        self,
        tasklist_id,
        task_id,
        data: bytes,
        filename: str,
        content_type: str | None = None,
    ) -> str:
        """Upload a photo and add it to the task's draft."""
        upload = await self._client.upload_evidence(
            tasklist_id,
            task_id,
            data,
            filename,
            content_type,
            submission_id=self.store.submission_id(tasklist_id),
        )
        self.store.add_photo(tasklist_id, task_id, upload.path)
        log.info("kiosk.photo_attached", tasklist_id=str(tasklist_id), task_id=str(task_id))
        return upload.path

    # --- PIN-gated flows ---

    def begin_completion(self, tasklist_id, task_id) -> bool:
        """Open the PIN pad for a completion, or refuse with a message."""
        reason = self.store.ineligibility_reason(tasklist_id, task_id)
        if reason is not None:
            self.message = reason
            log.info("kiosk.completion_refused", task_id=str(task_id), reason=reason)
            return False
        return self._begin(PendingAction("complete", str(tasklist_id), str(task_id)))

    def begin_signoff(self, tasklist_id) -> bool:
        """Open the PIN pad for a signoff, or refuse with a message."""
        if not self.store.can_sign_off(tasklist_id):
            self.message = "Every task must be complete or N/A before signing off"
            log.info("kiosk.signoff_refused", tasklist_id=str(tasklist_id))
            return False
        return self._begin(PendingAction("signoff", str(tasklist_id)))

    def _begin(self, action: PendingAction) -> bool:
        if self.pin_pad.is_open:
            return False
        self.pending = action
        self.message = None
        self.pin_pad.open()
        return True

    def cancel(self) -> None:
        self.pin_pad.cancel()
        if not self.pin_pad.is_open:
            self.pending = None

    async def submit_pin(self) -> WorkingStateRead | SubmissionRead | None:
        """Submit the PIN pad for the pending action. None while the dialog stays open."""
        action = self.pending
        if action is None:
            return None

        gate: Callable[[str], Awaitable]
        if action.kind == "complete":
            gate = self._complete_gate(action)
        else:
            gate = self._signoff_gate(action)

        result = await self.pin_pad.submit(gate)
        if result is None:
            self.message = self.pin_pad.error
            if self.pending is action and not self.pin_pad.is_open:
                self.pending = None
            return None

        self.pending = None
        return result

    def _complete_gate(self, action: PendingAction):
        async def gate(pin: str) -> WorkingStateRead | Denied:
            draft = self.store.draft(action.tasklist_id, action.task_id).to_task_draft()
            result = await self._client.complete_task(
                action.tasklist_id, action.task_id, pin, draft, self.date
            )
            if isinstance(result, Denied):
                return result
            self.store.mark_saved(action.tasklist_id, action.task_id)
            self.store.reconcile(result)
            log.info("kiosk.task_completed", tasklist_id=action.tasklist_id, task_id=action.task_id)
            return result

        return gate

    def _signoff_gate(self, action: PendingAction):
        async def gate(pin: str) -> SubmissionRead | Denied:
            result = await self._client.sign_off(
                action.tasklist_id, pin, self.store.signoff_drafts(action.tasklist_id), self.date
            )
            if isinstance(result, Denied):
                return result
            for task_id in self.store.signoff_drafts(action.tasklist_id):
                self.store.mark_saved(action.tasklist_id, task_id)
            await self._refresh_tasklist(action.tasklist_id)
            log.info("kiosk.signed_off", tasklist_id=action.tasklist_id, submission_id=str(result.id))
            return result

        return gate

    # --- Rework ---

    async def resubmit(self, tasklist_id) -> ResubmitResult:
        """Send fixed rework tasks back for review."""
        submission_id = self.store.submission_id(tasklist_id)
        if submission_id is None:
            raise KioskError("Nothing has been submitted for this tasklist yet")
        result = await self._client.resubmit(submission_id)
        await self._refresh_tasklist(tasklist_id)
        log.info(
            "kiosk.resubmitted",
            tasklist_id=str(tasklist_id),
            resubmitted=len(result.resubmitted),
            still_rework=len(result.still_rework),
        )
        return result
