"""Bounded history of outgoing events for client resynchronisation."""

from __future__ import annotations

import dataclasses
import threading
from collections import deque

from muxagent.domain import Event

DEFAULT_SIZE = 1024


class EventBuffer:
    """Fixed-size event history; each pushed event gets the next sequence number."""

    def __init__(self, size: int = DEFAULT_SIZE) -> None:
        if size <= 0:
            size = DEFAULT_SIZE
        self.size = size
        self._events: deque[Event] = deque(maxlen=size)
        self._seq = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def push(self, event: Event) -> Event:
        """Store a copy of ``event`` with its sequence number and return that copy."""
        with self._lock:
            self._seq += 1
            stored = dataclasses.replace(event, seq=self._seq)
            self._events.append(stored)
            return stored

    def since(self, after_seq: int) -> tuple[list[Event], bool]:
        """Return events after ``after_seq`` and whether the history has no gap."""
        with self._lock:
            if not self._events:
                return [], True
            if after_seq >= self._seq:
                return [], True
            oldest_seq = self._events[0].seq
            if after_seq < oldest_seq - 1:
                return list(self._events), False
            return [event for event in self._events if event.seq > after_seq], True

    def seq(self) -> int:
        """Return the latest assigned sequence number."""
        with self._lock:
            return self._seq