"""
Realtime change cues over Redis Pub/Sub, streamed to kiosks via SSE.

A cue only says *that* something changed ({org_id, table, location_id});
clients re-fetch authoritative state and never apply payload diffs.

Features:
- Table and location filtering per stream
- Keepalive heartbeat
- JWT revocation checking during streaming
- Connection limit enforcement per org
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import AsyncGenerator, Iterable, Optional
from uuid import UUID

import structlog
from fastapi import Request
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.redis import get_redis

log = structlog.get_logger()
settings = get_settings()

# Configuration
REDIS_PUBSUB_CHANNEL = "sc:changes:pubsub"
REDIS_SSE_CONN_KEY_PREFIX = "sc:sse:connections:"
HEARTBEAT_INTERVAL = settings.sse_heartbeat_seconds
MAX_CONNECTIONS_PER_ORG = settings.sse_max_connections_per_org
CHANGED_EVENT = "changed"

# Tables a cue may name
TABLE_SUBMISSIONS = "submissions"
TABLE_SUBMISSION_TASKS = "submission_tasks"
TABLE_TEMPLATES = "checklist_templates"
TABLE_LOCATIONS = "locations"
TABLE_TIME_BLOCKS = "time_blocks"
TABLE_MEMBERSHIPS = "memberships"


def build_cue(org_id: UUID, table: str, location_id: Optional[UUID] = None) -> dict:
    return {
        "org_id": str(org_id),
        "table": table,
        "location_id": str(location_id) if location_id else None,
        "at": datetime.now(timezone.utc).isoformat(),
    }


async def broadcast_change(
    org_id: UUID,
    tables: Iterable[str],
    location_id: Optional[UUID] = None,
) -> None:
    """
    Publish one change cue per table. Call after the write has committed.

    A publish failure is logged and does not undo or fail the committed write;
    subscribers recover on their next refresh.
    """
    try:
        redis = await get_redis()
        for table in tables:
            await redis.publish(
                REDIS_PUBSUB_CHANNEL, json.dumps(build_cue(org_id, table, location_id))
            )
    except RedisError as exc:
        log.warning("change.publish_failed", org_id=str(org_id), error=str(exc))


async def _increment_sse_connections(org_id: UUID) -> int:
    """Increment SSE connection counter for an org. Returns new count."""
    redis = await get_redis()
    key = f"{REDIS_SSE_CONN_KEY_PREFIX}{org_id}"
    count = await redis.incr(key)
    await redis.expire(key, 3600)  # auto-expire safety net
    return count


async def _decrement_sse_connections(org_id: UUID) -> None:
    """Decrement SSE connection counter for an org."""
    redis = await get_redis()
    key = f"{REDIS_SSE_CONN_KEY_PREFIX}{org_id}"
    await redis.decr(key)


async def get_sse_connection_count(org_id: UUID) -> int:
    """Get current SSE connection count for an org."""
    redis = await get_redis()
    key = f"{REDIS_SSE_CONN_KEY_PREFIX}{org_id}"
    val = await redis.get(key)
    return int(val) if val else 0


async def _check_jwt_revoked(jti: str | None) -> bool:
    """Check if the JWT has been revoked."""
    if not jti:
        return False
    redis = await get_redis()
    return await redis.exists(f"jwt:revoked:{jti}") > 0


def _matches_filter(
    cue: dict,
    org_id: UUID,
    tables: Optional[set[str]] = None,
    location_id: Optional[UUID] = None,
) -> bool:
    """
    Check if a cue is relevant to a stream.

    Always scoped to the stream's org. An empty table set means every table.
    Cues without a location (template or roster edits) reach every location.
    """
    if str(cue.get("org_id")) != str(org_id):
        return False
    if tables and cue.get("table") not in tables:
        return False
    cue_location = cue.get("location_id")
    if location_id and cue_location and str(cue_location) != str(location_id):
        return False
    return True


async def event_generator(
    request: Request,
    org_id: UUID,
    tables: Optional[set[str]] = None,
    location_id: Optional[UUID] = None,
    jti: str | None = None,
) -> AsyncGenerator[dict | str, None]:
    """
    SSE generator with:
    - Tenant/table/location filtering
    - Keepalive heartbeat
    - JWT revocation checking
    - Graceful cleanup on disconnect
    """
    # Track connection
    count = await _increment_sse_connections(org_id)
    if count > MAX_CONNECTIONS_PER_ORG:
        await _decrement_sse_connections(org_id)
        yield {
            "event": "error",
            "data": json.dumps({"code": "CONNECTION_LIMIT", "message": "Too many connections"}),
        }
        return

    redis = await get_redis()
    pubsub = redis.pubsub()
    await pubsub.subscribe(REDIS_PUBSUB_CHANNEL)
    log.info("sse.connected", org_id=str(org_id), location_id=str(location_id) if location_id else None)

    try:
        last_heartbeat = time.monotonic()
        revocation_check_counter = 0
        while True:
            if await request.is_disconnected():
                break

            # Check JWT revocation periodically (every 10 polls, about 10s)
            revocation_check_counter += 1
            if revocation_check_counter >= 10 and jti:
                revocation_check_counter = 0
                if await _check_jwt_revoked(jti):
                    yield {
                        "event": "session.revoked",
                        "data": json.dumps({"reason": "credential_revoked"}),
                    }
                    break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)

            if message is None:
                if time.monotonic() - last_heartbeat >= HEARTBEAT_INTERVAL:
                    last_heartbeat = time.monotonic()
                    yield ": heartbeat\n\n"
                continue

            if message["type"] == "message":
                cue = json.loads(message["data"])
                if _matches_filter(cue, org_id, tables, location_id):
                    yield {"event": CHANGED_EVENT, "data": json.dumps(cue)}

    except asyncio.CancelledError:
        log.info("sse.cancelled", org_id=str(org_id))
        raise
    finally:
        await _decrement_sse_connections(org_id)
        await pubsub.unsubscribe(REDIS_PUBSUB_CHANNEL)
        await pubsub.aclose()
