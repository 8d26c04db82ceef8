"""
Evidence (photo) blob storage.

`EvidenceStore` is the provider interface; `LocalEvidenceStore` keeps blobs on
the local filesystem and hands out time-limited signed URLs carrying a JWT
that `GET /evidence/{token}` verifies.
"""

from __future__ import annotations

import re
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import jwt
import structlog
from fastapi import HTTPException

from app.core.config import get_settings

log = structlog.get_logger()
settings = get_settings()

DEFAULT_EXTENSION = "png"

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}

EVIDENCE_TOKEN_AUDIENCE = "evidence"


def sanitize_extension(filename: Optional[str]) -> str:
    ext = filename.rsplit(".", 1)[-1] if filename and "." in filename else ""
    ext = re.sub(r"[^a-z0-9]", "", ext.lower())
    return ext or DEFAULT_EXTENSION


def guess_content_type(ext: str) -> str:
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def build_evidence_key(
    org_id: uuid.UUID | str,
    tasklist_id: uuid.UUID | str,
    task_id: uuid.UUID | str,
    filename: Optional[str],
) -> str:
    """`{org}/{tasklist}/{task}/{epoch_ms}_{random}.{ext}`"""
    ext = sanitize_extension(filename)
    stamp = int(time.time() * 1000)
    return f"{org_id}/{tasklist_id}/{task_id}/{stamp}_{secrets.token_hex(4)}.{ext}"


class EvidenceStore:
    def upload(self, data: bytes, content_type: Optional[str], key: str) -> str:
        raise NotImplementedError

    def read(self, path: str) -> tuple[bytes, str]:
        raise NotImplementedError

    def signed_url(self, path: str, ttl: int) -> str:
        raise NotImplementedError


class LocalEvidenceStore(EvidenceStore):
    """Local filesystem provider."""

    def __init__(self, base_dir: str | Path, base_url: str = ""):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def _get_path(self, key: str) -> Path:
        parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        if not parts:
            raise HTTPException(status_code=400, detail="Invalid evidence path")
        return self.base_dir.joinpath(*parts)

    def upload(self, data: bytes, content_type: Optional[str], key: str) -> str:
        path = self._get_path(key)
        if path.exists():
            raise HTTPException(status_code=409, detail="Evidence already exists")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.info(
            "evidence.stored",
            path=key,
            bytes=len(data),
            content_type=content_type or guess_content_type(sanitize_extension(key)),
        )
        return key

    def read(self, path: str) -> tuple[bytes, str]:
        file_path = self._get_path(path)
        if not file_path.is_file():
            raise HTTPException(status_code=404, detail="Evidence not found")
        return file_path.read_bytes(), guess_content_type(sanitize_extension(path))

    def signed_url(self, path: str, ttl: int) -> str:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "path": path,
                "aud": EVIDENCE_TOKEN_AUDIENCE,
                "iat": now,
                "exp": now + timedelta(seconds=ttl),
            },
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        return f"{self.base_url}/evidence/{token}"


def verify_evidence_token(token: str) -> str:
    """Return the evidence path a signed URL grants, or raise 403."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=EVIDENCE_TOKEN_AUDIENCE,
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=403, detail="Evidence link invalid or expired")
    return payload["path"]


_store: EvidenceStore | None = None


def get_evidence_store() -> EvidenceStore:
    """FastAPI dependency: the process-wide evidence store."""
    global _store
    if _store is None:
        _store = LocalEvidenceStore(settings.evidence_dir, settings.public_base_url)
    return _store
