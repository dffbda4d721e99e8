"""
Bounded event history.

Keeps the last N parsed events in arrival order, independent of session
keys: events of sessions that have since ended stay visible for debugging.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator

from eocc.schemas.events import HookEvent

__all__ = ['DEFAULT_HISTORY_LIMIT', 'EventHistory']

DEFAULT_HISTORY_LIMIT = 50


class EventHistory:
    """FIFO ring of recent events; the oldest entry is evicted once full."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT, events: Iterable[HookEvent] = ()) -> None:
        if limit < 1:
            raise ValueError(f'History limit must be positive, got {limit}')
        self._limit = limit
        self._events: deque[HookEvent] = deque(maxlen=limit)
        self.extend(events)

    @property
    def limit(self) -> int:
        return self._limit

    def append(self, event: HookEvent) -> None:
        self._events.append(event)

    def extend(self, events: Iterable[HookEvent]) -> None:
        for event in events:
            self.append(event)

    def recent(self, limit: int = 10) -> list[HookEvent]:
        """Most recent events first."""
        if limit <= 0:
            return []
        return list(reversed(self._events))[:limit]

    def clear(self) -> None:
        self._events.clear()

    def as_tuple(self) -> tuple[HookEvent, ...]:
        """Oldest first, detached from the live buffer."""
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[HookEvent]:
        return iter(tuple(self._events))
