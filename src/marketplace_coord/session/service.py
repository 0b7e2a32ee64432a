"""Session store — per-device sessions with a reverse index per user.

Layout in the shared store:

- ``session:{session_id}``   JSON :class:`Session`, expires after its ``ttl``
- ``user_sessions:{user_id}`` set of the user's session ids

Reading a session slides its expiry forward. The user index is kept alive
at least as long as the longest-lived session written through it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from marketplace_coord.session.models import Session, SessionStats, UserRole

if TYPE_CHECKING:
    from marketplace_coord.config.settings import SessionConfig
    from marketplace_coord.store.client import StoreClient

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
USER_SESSION_PREFIX = "user_sessions:"

_IMMUTABLE_FIELDS = frozenset({"session_id", "user_id", "created_at"})


class SessionStore:
    """Multi-device session tracking on the shared store."""

    def __init__(self, store: StoreClient, config: SessionConfig) -> None:
        self._store = store
        self._config = config

    @property
    def default_ttl(self) -> int:
        return self._config.default_ttl

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    @staticmethod
    def _index_key(user_id: str) -> str:
        return f"{USER_SESSION_PREFIX}{user_id}"

    async def _load(self, session_id: str) -> Session | None:
        """Read a session without refreshing it; malformed data is a miss."""
        raw = await self._store.get(self._session_key(session_id))
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed session %s", session_id)
            return None

    async def _save(self, session: Session) -> None:
        await self._store.set(
            self._session_key(session.session_id),
            session.model_dump_json(),
            session.ttl,
        )

    async def _extend_index(self, user_id: str, ttl: int) -> None:
        index_key = self._index_key(user_id)
        if await self._store.ttl(index_key) < ttl:
            await self._store.expire(index_key, ttl)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        user_id: str,
        role: UserRole | str,
        email: str,
        *,
        ttl: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create a session for *user_id* and return its id.

        Args:
            user_id: Owner of the session.
            role: ``client`` or ``vendor``.
            email: Email address recorded with the session.
            ttl: Sliding expiration in seconds (default 24h).
            metadata: Optional free-form attributes (device, user agent, ...).
        """
        now = datetime.now(tz=UTC)
        session = Session(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            role=UserRole(role),
            email=email,
            created_at=now,
            last_activity=now,
            ttl=ttl or self.default_ttl,
            metadata=metadata or {},
        )
        await self._save(session)
        await self._store.sadd(self._index_key(user_id), session.session_id)
        await self._extend_index(user_id, session.ttl)
        return session.session_id

    async def get_session(self, session_id: str) -> Session | None:
        """Return the session and slide its expiry, or None if it is gone."""
        session = await self._load(session_id)
        if session is None:
            return None
        session = session.model_copy(update={"last_activity": datetime.now(tz=UTC)})
        await self._save(session)
        await self._extend_index(session.user_id, session.ttl)
        return session

    async def update_session(self, session_id: str, /, **changes: Any) -> bool:
        """Apply *changes* to a live session.

        Raises:
            ValueError: If *changes* touches an immutable or unknown field.
        """
        forbidden = set(changes) & _IMMUTABLE_FIELDS
        unknown = set(changes) - set(Session.model_fields)
        if forbidden or unknown:
            msg = f"cannot update session fields: {sorted(forbidden | unknown)}"
            raise ValueError(msg)

        existing = await self.get_session(session_id)
        if existing is None:
            return False

        data = existing.model_dump()
        data.update(changes)
        data["last_activity"] = datetime.now(tz=UTC)
        updated = Session.model_validate(data)
        await self._save(updated)
        await self._extend_index(updated.user_id, updated.ttl)
        return True

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and drop it from its owner's index."""
        session = await self._load(session_id)
        if session is not None:
            await self._store.srem(self._index_key(session.user_id), session_id)
        return await self._store.delete(self._session_key(session_id)) > 0

    async def delete_user_sessions(self, user_id: str) -> int:
        """Log a user out everywhere.

        Returns:
            Number of session records removed.
        """
        index_key = self._index_key(user_id)
        session_ids = await self._store.smembers(index_key)
        if not session_ids:
            return 0
        removed = await self._store.delete(*(self._session_key(sid) for sid in session_ids))
        await self._store.delete(index_key)
        return removed

    async def get_user_sessions(self, user_id: str) -> list[Session]:
        """Return the user's live sessions, pruning expired ids from the index."""
        index_key = self._index_key(user_id)
        sessions: list[Session] = []
        stale: list[str] = []
        for session_id in await self._store.smembers(index_key):
            session = await self.get_session(session_id)
            if session is None:
                stale.append(session_id)
            else:
                sessions.append(session)
        if stale:
            await self._store.srem(index_key, *stale)
        return sorted(sessions, key=lambda s: s.created_at)

    async def is_valid_session(self, session_id: str) -> bool:
        return await self.get_session(session_id) is not None

    async def extend_session(self, session_id: str, seconds: int | None = None) -> bool:
        """Set the session's sliding window to *seconds* (default 24h).

        The new window is stored on the session, so later reads keep it.
        """
        session = await self._load(session_id)
        if session is None:
            return False
        session = session.model_copy(update={"ttl": seconds or self.default_ttl})
        await self._save(session)
        await self._extend_index(session.user_id, session.ttl)
        return True

    async def prune_user_index(self, user_id: str) -> int:
        """Remove ids of expired sessions from a user's index; returns how many."""
        index_key = self._index_key(user_id)
        stale = [
            sid
            for sid in await self._store.smembers(index_key)
            if not await self._store.exists(self._session_key(sid))
        ]
        if stale:
            await self._store.srem(index_key, *stale)
        return len(stale)

    async def get_session_stats(self) -> SessionStats:
        """Count stored sessions and those active within the configured window."""
        keys = await self._store.keys(f"{SESSION_PREFIX}*")
        cutoff = datetime.now(tz=UTC) - timedelta(seconds=self._config.active_window_seconds)
        raw_values = await self._store.mget(keys) if keys else []
        active = 0
        for raw in raw_values:
            if raw is None:
                continue
            try:
                session = Session.model_validate_json(raw)
            except ValidationError:
                continue
            if session.last_activity >= cutoff:
                active += 1
        return SessionStats(total_sessions=len(keys), active_sessions=active)

    async def user_ids(self) -> list[str]:
        """Ids of every user that currently has a session index."""
        keys = await self._store.keys(f"{USER_SESSION_PREFIX}*")
        return [k[len(USER_SESSION_PREFIX) :] for k in keys]
