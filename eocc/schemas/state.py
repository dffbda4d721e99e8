"""
Session state models.

These are the models the monitor produces: the per-project Session, and the
StateSnapshot that is both published to the UI and persisted to
runtime_state.json.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Literal

import pydantic

from eocc.schemas.events import HookEvent, session_key
from eocc.schemas.types import BaseStrictModel

__all__ = [
    'APP_TITLE',
    'STATUS_EMOJI',
    'WAITING_STATUSES',
    'Session',
    'SessionStatus',
    'StateSnapshot',
]

APP_TITLE = 'Eyes on Claude Code'

SessionStatus = Literal['Active', 'WaitingPermission', 'WaitingInput', 'Completed']

STATUS_EMOJI: dict[SessionStatus, str] = {
    'Active': '🟢',
    'WaitingPermission': '🔐',
    'WaitingInput': '⏳',
    'Completed': '✅',
}

WAITING_STATUSES: frozenset[SessionStatus] = frozenset({'WaitingPermission', 'WaitingInput'})


class Session(BaseStrictModel):
    """Live state of one monitored project."""

    project_name: str
    project_dir: str
    session_id: str = ''
    status: SessionStatus
    last_event: str  # Timestamp of the most recent event that touched this session
    waiting_for: str = ''  # Empty unless status is a waiting state

    @property
    def key(self) -> str:
        return session_key(self.project_dir, self.project_name)

    @property
    def emoji(self) -> str:
        return STATUS_EMOJI[self.status]

    @property
    def is_waiting(self) -> bool:
        return self.status in WAITING_STATUSES


class StateSnapshot(BaseStrictModel):
    """
    Immutable copy of the session map and event history at one point in time.

    Sessions are ordered by session key; events are ordered oldest first.
    consumed maps each processing file name to the number of its bytes already
    applied, so a restart resumes that file instead of applying it again.
    """

    sessions: Sequence[Session] = ()
    events: Sequence[HookEvent] = ()
    consumed: Mapping[str, int] = pydantic.Field(default_factory=dict)

    @property
    def waiting_session_count(self) -> int:
        return sum(1 for session in self.sessions if session.is_waiting)

    def recent_events(self, limit: int = 10) -> list[HookEvent]:
        """Most recent events first, as the dashboard lists them."""
        if limit <= 0:
            return []
        return list(reversed(self.events[-limit:]))

    @property
    def tooltip(self) -> str:
        waiting = self.waiting_session_count
        if waiting > 0:
            return f'{APP_TITLE} - {waiting} waiting'
        if not self.sessions:
            return f'{APP_TITLE} - No active sessions'
        return APP_TITLE
