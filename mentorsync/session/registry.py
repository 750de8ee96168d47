"""
Connection Registry: Live Sessions per User

Process-wide map from user ID to the ordered list of live sessions bound
to that user (one per device/tab). Used to fan `data` events out to every
connection of the users a change affects.

Storage Model:
    Plain dict of lists, mutated only between awaits on the event loop.
    Nothing is persisted; offline users simply receive nothing until their
    next `initialData` push.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol

from mentorsync.core import constants as C
from mentorsync.core.types import DocumentId
from mentorsync.observability.metrics import SessionMetrics


logger = logging.getLogger(__name__)


class Broadcastable(Protocol):
    """What the registry needs from a session."""

    @property
    def session_id(self) -> str: ...

    def push(self, data_type: str, data: Any) -> None: ...


class ConnectionRegistry:
    """
    User ID → live sessions.

    Usage:
        registry = ConnectionRegistry()
        registry.register(user_id, session)
        registry.broadcast([mentor_id, mentee_id], "mentorshipRequest", record)
        registry.unregister(user_id, session)
    """

    __slots__ = ("_sessions", "_metrics")

    def __init__(self, metrics: Optional[SessionMetrics] = None) -> None:
        self._sessions: dict[DocumentId, list[Broadcastable]] = {}
        self._metrics = metrics

    def register(self, user_id: DocumentId, session: Broadcastable) -> bool:
        """
        Add a session under `user_id`.

        Returns False when the session was already registered for that user.
        """
        sessions = self._sessions.setdefault(user_id, [])
        if any(s is session for s in sessions):
            return False
        sessions.append(session)
        if self._metrics:
            self._metrics.live_sessions.inc()
        logger.debug(
            "Registered session %s for user %s (%d live)",
            session.session_id, user_id, len(sessions),
        )
        return True

    def unregister(self, user_id: DocumentId, session: Broadcastable) -> bool:
        """
        Remove exactly one entry for the session.

        The user's mapping is dropped once it has no sessions left.
        """
        sessions = self._sessions.get(user_id)
        if not sessions:
            return False
        for index, candidate in enumerate(sessions):
            if candidate is session:
                del sessions[index]
                break
        else:
            return False

        if not sessions:
            del self._sessions[user_id]
        if self._metrics:
            self._metrics.live_sessions.dec()
        logger.debug("Unregistered session %s for user %s", session.session_id, user_id)
        return True

    def broadcast(
        self,
        user_ids: Iterable[Optional[DocumentId]],
        data_type: str,
        data: Any,
    ) -> int:
        """
        Push `data{type, data}` to every live session of each user.

        Offline users are skipped; each user is visited once even if listed
        twice. Returns the number of sessions reached.
        """
        delivered = 0
        seen: set[DocumentId] = set()
        for user_id in user_ids:
            if user_id is None or user_id in seen:
                continue
            seen.add(user_id)
            for session in list(self._sessions.get(user_id, ())):
                try:
                    session.push(data_type, data)
                except Exception:
                    logger.exception(
                        "Broadcast to session %s failed", session.session_id,
                    )
                    continue
                delivered += 1

        if self._metrics and delivered:
            self._metrics.broadcasts.inc(delivered, type=data_type)
        return delivered

    def broadcast_request(self, user_ids: Iterable[Optional[DocumentId]], record: Any) -> int:
        return self.broadcast(user_ids, C.DATA_MENTORSHIP_REQUEST, record)

    def sessions_for(self, user_id: DocumentId) -> list[Broadcastable]:
        return list(self._sessions.get(user_id, ()))

    def is_online(self, user_id: DocumentId) -> bool:
        return user_id in self._sessions

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return sum(len(sessions) for sessions in self._sessions.values())

    @property
    def user_count(self) -> int:
        return len(self._sessions)
