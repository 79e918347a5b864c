"""Daemon-side tracking of each session's run status."""

from __future__ import annotations

import threading
from typing import Container, Mapping, Optional

from muxagent.domain import Event, EventType, SessionStatus

_EVENT_STATUS = {
    EventType.APPROVAL_REQUESTED: SessionStatus.WAITING_APPROVAL,
    EventType.APPROVAL_REPLIED: SessionStatus.RUNNING,
    EventType.RUN_FINISHED: SessionStatus.IDLE,
    EventType.RUN_FAILED: SessionStatus.ERROR,
}


class StatusTracker:
    """Thread-safe map from session id to the status the daemon last saw."""

    def __init__(self, initial: Optional[Mapping[str, SessionStatus | str]] = None) -> None:
        self._lock = threading.Lock()
        self._statuses: dict[str, SessionStatus | str] = dict(initial or {})

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._statuses

    def __len__(self) -> int:
        with self._lock:
            return len(self._statuses)

    def set(self, session_id: str, status: SessionStatus | str) -> None:
        """Record ``status`` for the session; empty ids are ignored."""
        if not session_id:
            return
        with self._lock:
            self._statuses[session_id] = status

    def ensure(self, session_id: str, status: SessionStatus | str) -> None:
        """Record ``status`` only if the session has no status yet."""
        if not session_id:
            return
        with self._lock:
            self._statuses.setdefault(session_id, status)

    def resolved(self, session_id: str) -> SessionStatus | str:
        """Return the tracked status, or idle when none is known."""
        with self._lock:
            return self._statuses.get(session_id, SessionStatus.IDLE)

    def clear(self, session_id: str) -> None:
        """Forget the session's status."""
        if not session_id:
            return
        with self._lock:
            self._statuses.pop(session_id, None)

    def clear_missing(self, present: Container[str]) -> None:
        """Forget every session whose id is not in ``present``."""
        with self._lock:
            for session_id in [sid for sid in self._statuses if sid not in present]:
                del self._statuses[session_id]

    def apply_event(self, event: Event) -> None:
        """Update the session's status from an outgoing event."""
        if not event.session_id:
            return
        try:
            event_type = EventType(event.type)
        except ValueError:
            return
        if event_type == EventType.SESSION_STATUS:
            if event.session is not None:
                self.set(event.session_id, event.session.status)
            return
        status = _EVENT_STATUS.get(event_type)
        if status is not None:
            self.set(event.session_id, status)