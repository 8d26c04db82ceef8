"""Coded HTTP errors raised from the service layer."""

from __future__ import annotations

from typing import Iterable, Optional

from fastapi import HTTPException

from shiftcheck_shared.schemas.common import ErrorDetail

TASK_NOT_ELIGIBLE = "TASK_NOT_ELIGIBLE"
TASKLIST_INCOMPLETE = "TASKLIST_INCOMPLETE"
TASK_LOCKED = "TASK_LOCKED"
INVALID_REVIEW_TRANSITION = "INVALID_REVIEW_TRANSITION"
PIN_REJECTED = "PIN_REJECTED"
CSRF_REJECTED = "CSRF_REJECTED"


def coded_error(
    status_code: int,
    code: str,
    message: str,
    task_ids: Optional[Iterable] = None,
) -> HTTPException:
    detail = ErrorDetail(
        code=code,
        message=message,
        task_ids=[str(t) for t in task_ids] if task_ids is not None else None,
    )
    return HTTPException(status_code=status_code, detail=detail.model_dump(exclude_none=True))
