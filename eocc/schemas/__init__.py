"""
Pydantic schemas for hook events and monitor state.

Re-exports the public models for convenient importing.
"""

from __future__ import annotations

from eocc.schemas.events import (
    EVENT_KINDS,
    NOTIFICATION_TYPES,
    EventKind,
    HookEvent,
    NotificationType,
    parse_event_line,
)
from eocc.schemas.state import (
    APP_TITLE,
    STATUS_EMOJI,
    WAITING_STATUSES,
    Session,
    SessionStatus,
    StateSnapshot,
)
from eocc.schemas.types import BaseStrictModel, PermissiveModel

__all__ = [
    'APP_TITLE',
    'BaseStrictModel',
    'EVENT_KINDS',
    'EventKind',
    'HookEvent',
    'NOTIFICATION_TYPES',
    'NotificationType',
    'PermissiveModel',
    'STATUS_EMOJI',
    'Session',
    'SessionStatus',
    'StateSnapshot',
    'WAITING_STATUSES',
    'parse_event_line',
]
