"""Session data models."""

from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, Field


class UserRole(enum.StrEnum):
    """Marketplace roles that can hold a session."""

    CLIENT = "client"
    VENDOR = "vendor"


class Session(BaseModel):
    """A logged-in device session, stored as JSON under ``session:{id}``."""

    session_id: str
    user_id: str
    role: UserRole
    email: str
    created_at: datetime
    last_activity: datetime
    ttl: int = Field(gt=0, description="Sliding expiration window in seconds")
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionStats(BaseModel):
    """Session counts reported by the health and stats endpoints."""

    total_sessions: int
    active_sessions: int
