"""
Configuration loading and validation.

Loads kiosk configuration from a YAML file. The device token is resolved
from an environment variable and never stored in the config file.
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    verify_tls: bool = True
    request_timeout_seconds: int = 30
    sse_heartbeat_timeout_seconds: int = 90


class DeviceConfig(BaseModel):
    name: str = "kiosk"
    org_slug: str
    location_id: uuid.UUID
    token_env: str = "SHIFTCHECK_KIOSK_TOKEN"
    # Tables whose change cues trigger a refresh
    watch_tables: list[str] = Field(
        default_factory=lambda: ["submissions", "submission_tasks", "checklist_templates"]
    )

    @property
    def token(self) -> str | None:
        return os.environ.get(self.token_env)


class RefreshConfig(BaseModel):
    debounce_ms: int = Field(default=300, ge=0)


class PinConfig(BaseModel):
    # Longest PIN the pad accepts; the server enforces the full policy
    max_length: int = Field(default=8, ge=1, le=16)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "json"


class KioskConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    kiosk: DeviceConfig
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    pin: PinConfig = Field(default_factory=PinConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> KioskConfig:
    """Load and validate kiosk configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return KioskConfig.model_validate(raw)
