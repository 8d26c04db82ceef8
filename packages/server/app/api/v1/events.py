"""
Change-cue streaming endpoint.

- GET /stream: authenticated SSE stream of `changed` events, filtered by
  table and location
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sse_starlette.sse import EventSourceResponse

from app.core.auth import AuthenticatedUser, require_member
from app.core.events import MAX_CONNECTIONS_PER_ORG, event_generator, get_sse_connection_count

router = APIRouter()


def _parse_tables(tables: Optional[str]) -> Optional[set[str]]:
    if not tables:
        return None
    return {t.strip() for t in tables.split(",") if t.strip()} or None


@router.get("/stream")
async def stream_events(
    request: Request,
    orgSlug: str,
    tables: Optional[str] = None,
    location_id: Optional[uuid.UUID] = None,
    auth: AuthenticatedUser = Depends(require_member),
):
    """
    Stream change cues for an organization via SSE.

    `tables` is a comma-separated list (e.g. `submissions,submission_tasks`);
    omitted means every table. Cues carry no row data: clients re-fetch.

    Emits `: heartbeat` comments to keep the connection alive.
    """
    current_count = await get_sse_connection_count(auth.org_id)
    if current_count >= MAX_CONNECTIONS_PER_ORG:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many concurrent SSE connections for this organization.",
        )

    return EventSourceResponse(
        event_generator(
            request,
            auth.org_id,
            tables=_parse_tables(tables),
            location_id=location_id,
            jti=auth.jti,
        )
    )
