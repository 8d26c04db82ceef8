"""
API v1 Router

All org-scoped endpoints are prefixed with /orgs/{orgSlug}.
"""

from fastapi import APIRouter
from . import admin, events, evidence, roster, submissions, tasklists

router = APIRouter()

# Kiosk-facing: tasklists, working state, completion, signoff
router.include_router(tasklists.router, prefix="/orgs/{orgSlug}/locations", tags=["Tasklists"])

# Manager-facing: dashboard, review & rework
router.include_router(submissions.router, prefix="/orgs/{orgSlug}/submissions", tags=["Submissions"])

# PIN gate & roster
router.include_router(roster.router, prefix="/orgs/{orgSlug}", tags=["Roster"])

router.include_router(evidence.router, prefix="/orgs/{orgSlug}/evidence", tags=["Evidence"])
router.include_router(events.router, prefix="/orgs/{orgSlug}/events", tags=["Events"])
router.include_router(admin.router, prefix="/orgs/{orgSlug}/admin", tags=["Administration"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/orgs/{orgSlug}/locations/{locationId}/tasklists",
            "/orgs/{orgSlug}/submissions",
            "/orgs/{orgSlug}/pin/verify",
            "/orgs/{orgSlug}/members",
            "/orgs/{orgSlug}/evidence",
            "/orgs/{orgSlug}/events/stream",
            "/orgs/{orgSlug}/admin",
        ],
    }
