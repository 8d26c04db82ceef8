"""
Evidence endpoints.

- POST /orgs/{orgSlug}/evidence: upload a photo; when `submission_id` is given
  the path is appended to that task's photo list
- GET /evidence/{token}: serve a blob behind a signed, time-limited URL
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthenticatedUser, require_member
from app.core.config import get_settings
from app.core.database import get_session
from app.core.events import TABLE_SUBMISSION_TASKS, broadcast_change
from app.services.submissions import append_photo, get_submission_or_404
from app.storage.evidence import (
    EvidenceStore,
    build_evidence_key,
    get_evidence_store,
    guess_content_type,
    sanitize_extension,
    verify_evidence_token,
)
from shiftcheck_shared.schemas.submissions import EvidenceUploadResponse

settings = get_settings()
router = APIRouter()
public_router = APIRouter()


@router.post("/", response_model=EvidenceUploadResponse, status_code=201)
async def upload_evidence_endpoint(
    orgSlug: str,
    tasklist_id: uuid.UUID = Form(...),
    task_id: uuid.UUID = Form(...),
    submission_id: Optional[uuid.UUID] = Form(None),
    file: UploadFile = File(...),
    auth: AuthenticatedUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
    store: EvidenceStore = Depends(get_evidence_store),
):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=422, detail="Empty upload")
    if len(data) > settings.evidence_max_bytes:
        raise HTTPException(status_code=413, detail="Evidence file too large")

    submission = None
    if submission_id is not None:
        submission = await get_submission_or_404(session, submission_id, auth.org_id)

    key = build_evidence_key(auth.org_id, tasklist_id, task_id, file.filename)
    content_type = file.content_type or guess_content_type(sanitize_extension(file.filename))
    path = store.upload(data, content_type, key)

    if submission is not None:
        await append_photo(session, submission.id, task_id, path)
        await session.commit()
        await broadcast_change(auth.org_id, [TABLE_SUBMISSION_TASKS], submission.location_id)

    return EvidenceUploadResponse(path=path, url=store.signed_url(path, settings.evidence_url_ttl))


@public_router.get("/{token}")
async def serve_evidence_endpoint(
    token: str,
    store: EvidenceStore = Depends(get_evidence_store),
):
    path = verify_evidence_token(token)
    data, content_type = store.read(path)
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": f"private, max-age={settings.evidence_url_ttl}"},
    )
