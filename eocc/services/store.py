"""
State store - single owner of the session map and event history.

All mutation goes through this class, and in the running monitor all calls
come from one asyncio task (the drain loop, plus UI commands scheduled on the
same loop), so no locking is needed. Other components only ever see
immutable StateSnapshot objects.

After every change the store:
1. publishes a snapshot to subscribed listeners
2. persists the snapshot via SnapshotFileStorage

The snapshot also carries, per processing file, how many bytes of it have been
applied. That offset is written in the same file as the sessions it produced,
so after a crash the drain loop resumes each file exactly where the persisted
state ends.

Persistence and listener failures are logged and swallowed: the in-memory
state stays authoritative and the live view keeps working.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping

from eocc.exceptions import SnapshotError
from eocc.protocols import LoggerProtocol, NullLogger, SnapshotListener
from eocc.schemas.events import HookEvent
from eocc.schemas.state import Session, StateSnapshot
from eocc.services.history import DEFAULT_HISTORY_LIMIT, EventHistory
from eocc.services.reducer import reduce_event
from eocc.storage.snapshot import SnapshotFileStorage

__all__ = ['StateStore']

logger = logging.getLogger(__name__)


class StateStore:
    """
    Owns the authoritative session map and event history.

    Args:
        storage: Snapshot persistence backend (None disables persistence)
        history_limit: Number of events retained in history
        log: Logger for persistence problems
    """

    def __init__(
        self,
        storage: SnapshotFileStorage | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        log: LoggerProtocol | None = None,
    ) -> None:
        self.storage = storage
        self.log: LoggerProtocol = log or NullLogger()
        self._sessions: dict[str, Session] = {}
        self._history = EventHistory(history_limit)
        self._consumed: dict[str, int] = {}
        self._listeners: list[SnapshotListener] = []

    # ==========================================================================
    # Read side
    # ==========================================================================

    @property
    def sessions(self) -> Mapping[str, Session]:
        """Read-only view of the current sessions, keyed by session key."""
        return dict(self._sessions)

    @property
    def history(self) -> tuple[HookEvent, ...]:
        return self._history.as_tuple()

    def snapshot(self) -> StateSnapshot:
        """Pull accessor: an immutable copy of the current state."""
        return StateSnapshot(
            sessions=tuple(self._sessions[key] for key in sorted(self._sessions)),
            events=self._history.as_tuple(),
            consumed=dict(self._consumed),
        )

    def consumed_offset(self, source: str) -> int:
        """Bytes of a processing file already applied (0 if never seen)."""
        return self._consumed.get(source, 0)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener for published snapshots.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ==========================================================================
    # Startup
    # ==========================================================================

    async def load(self) -> bool:
        """
        Restore the last persisted snapshot.

        A missing or corrupt snapshot is not an error: the store starts empty.

        Returns:
            True if a snapshot was restored
        """
        if self.storage is None:
            return False

        try:
            snapshot = self.storage.load()
        except SnapshotError as e:
            await self.log.warning(f'Ignoring unreadable runtime state, starting empty: {e}')
            return False

        if snapshot is None:
            await self.log.info(f'No runtime state at {self.storage.path}, starting empty')
            return False

        self._sessions = {session.key: session for session in snapshot.sessions}
        self._history = EventHistory(self._history.limit, snapshot.events)
        self._consumed = dict(snapshot.consumed)
        await self.log.info(
            f'Restored {len(self._sessions)} sessions and {len(self._history)} events from {self.storage.path}'
        )
        return True

    # ==========================================================================
    # Ingestion (drain loop)
    # ==========================================================================

    async def apply_events(
        self,
        events: Iterable[HookEvent],
        source: str | None = None,
        offset: int | None = None,
    ) -> int:
        """
        Record events in history and reduce them into the session map.

        Args:
            events: Parsed events in file order
            source: Name of the processing file the events were read from
            offset: Bytes of that file consumed once these events are applied

        Returns:
            Number of events applied (publish + persist happen when non-zero)
        """
        applied = 0
        for event in events:
            self._history.append(event)
            self._sessions = reduce_event(self._sessions, event)
            applied += 1

        if source is not None and offset is not None:
            self._consumed[source] = offset

        if applied:
            await self._commit()
        return applied

    def release(self, source: str) -> None:
        """Drop the offset of a processing file that has been deleted."""
        self._consumed.pop(source, None)

    def retain_sources(self, sources: Iterable[str]) -> None:
        """Drop offsets of every processing file not named in sources."""
        keep = set(sources)
        self._consumed = {name: offset for name, offset in self._consumed.items() if name in keep}

    # ==========================================================================
    # Commands (UI collaborator)
    # ==========================================================================

    async def remove_session(self, key: str) -> bool:
        """
        Forget one session without waiting for its session_end.

        Returns:
            True if a session with that key existed
        """
        if key not in self._sessions:
            return False
        self._sessions = {k: v for k, v in self._sessions.items() if k != key}
        await self._commit()
        return True

    async def clear_sessions(self) -> int:
        """
        Forget all sessions. History is kept.

        Returns:
            Number of sessions removed
        """
        removed = len(self._sessions)
        self._sessions = {}
        await self._commit()
        return removed

    # ==========================================================================
    # Publication
    # ==========================================================================

    async def _commit(self) -> None:
        snapshot = self.snapshot()
        self._publish(snapshot)
        await self._persist(snapshot)

    def _publish(self, snapshot: StateSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception('Snapshot listener %r failed', listener)

    async def _persist(self, snapshot: StateSnapshot) -> None:
        if self.storage is None:
            return
        try:
            self.storage.save(snapshot)
        except SnapshotError as e:
            await self.log.error(f'Keeping in-memory state only: {e}')
