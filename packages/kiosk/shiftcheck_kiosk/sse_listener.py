"""
SSE listener for ShiftCheck change cues.

Maintains a persistent SSE connection for one kiosk with:
- Automatic reconnection with exponential backoff
- Heartbeat timeout detection (read timeout on the stream)
- Graceful shutdown support

Cues carry no row data. Every `changed` event becomes a bare signal to the
registered handlers, which re-fetch state.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import AsyncIterator, Callable, Iterable

import httpx
import structlog

log = structlog.get_logger()

# Reconnection parameters
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 60.0
RECONNECT_MULTIPLIER = 2.0

CHANGED_EVENT = "changed"

CueHandler = Callable[[], None]


class CueListener:
    """
    Persistent SSE connection to the org's change-cue stream.

    Handles reconnection and turns each cue into an edge-triggered signal.
    """

    def __init__(
        self,
        base_url: str,
        org_slug: str,
        token: str,
        location_id: uuid.UUID | None = None,
        tables: Iterable[str] = (),
        heartbeat_timeout: float = 90.0,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._org_slug = org_slug
        self._token = token
        self._location_id = location_id
        self._tables = list(tables)
        self._heartbeat_timeout = heartbeat_timeout
        self._verify_tls = verify_tls
        self._transport = transport

        self._handlers: list[CueHandler] = []
        self._running = False
        self._connected = False
        self._last_event_at: float | None = None
        self._reconnect_count = 0
        self._task: asyncio.Task | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_event_at(self) -> float | None:
        return self._last_event_at

    @property
    def reconnect_count(self) -> int:
        return self._reconnect_count

    def on_cue(self, handler: CueHandler) -> None:
        """Register a handler called (with no arguments) for every cue."""
        self._handlers.append(handler)

    async def start(self) -> None:
        """Start the listener loop."""
        self._running = True
        self._task = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        """Gracefully stop the listener."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._connected = False
        log.info("sse_listener.stopped", org=self._org_slug)

    async def _listen_loop(self) -> None:
        backoff = RECONNECT_BASE_SECONDS

        while self._running:
            try:
                await self._connect_and_stream()
                backoff = RECONNECT_BASE_SECONDS  # Reset on clean disconnect
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, OSError) as exc:
                self._connected = False
                log.warning(
                    "sse_listener.connection_lost",
                    org=self._org_slug,
                    error=str(exc),
                    backoff=backoff,
                )

            if not self._running:
                break

            self._reconnect_count += 1
            # A missed cue may have happened while disconnected
            self._signal()
            log.info(
                "sse_listener.reconnecting",
                org=self._org_slug,
                backoff=backoff,
                attempt=self._reconnect_count,
            )
            await asyncio.sleep(backoff)
            backoff = min(backoff * RECONNECT_MULTIPLIER, RECONNECT_MAX_SECONDS)

    def _params(self) -> dict[str, str]:
        params = {}
        if self._tables:
            params["tables"] = ",".join(self._tables)
        if self._location_id is not None:
            params["location_id"] = str(self._location_id)
        return params

    async def _connect_and_stream(self) -> None:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "text/event-stream",
        }
        url = f"{self._base_url}/api/v1/orgs/{self._org_slug}/events/stream"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=self._heartbeat_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url, headers=headers, params=self._params()) as response:
                response.raise_for_status()
                self._connected = True
                self._last_event_at = time.time()
                log.info("sse_listener.connected", org=self._org_slug, url=url)
                await self._consume(response.aiter_lines())
        self._connected = False

    async def _consume(self, lines: AsyncIterator[str]) -> int:
        """Read SSE lines, signalling once per `changed` event. Returns the cue count."""
        cues = 0
        current_event_type: str | None = None
        has_data = False

        async for line in lines:
            if not self._running:
                break

            line = line.rstrip("\n")
            self._last_event_at = time.time()

            if line.startswith("event:"):
                current_event_type = line[6:].strip()
            elif line.startswith("data:"):
                has_data = True
            elif line.startswith(":"):
                # Comment / keepalive
                pass
            elif line == "":
                if has_data and current_event_type in (None, CHANGED_EVENT):
                    cues += 1
                    self._signal()
                elif has_data:
                    log.info("sse_listener.event_ignored", event_type=current_event_type)
                current_event_type = None
                has_data = False
        return cues

    def _signal(self) -> None:
        for handler in self._handlers:
            try:
                handler()
            except Exception:
                log.exception("sse_listener.handler_error", org=self._org_slug)
