"""Session — multi-device session store with sliding expiration."""

from __future__ import annotations

from marketplace_coord.session.models import Session, SessionStats, UserRole
from marketplace_coord.session.service import SessionStore

__all__ = ["Session", "SessionStats", "SessionStore", "UserRole"]
