"""
Session reducer - pure state machine from hook events to session state.

    session_start ──► Active ◄──────── post_tool_use / user_prompt_submit
                        │    ╲
         notification   │     ╲ stop
      (permission/idle) ▼      ▼
        WaitingPermission ──► Completed
        WaitingInput      ──►
                        │
      session_end (from any state) ──► removed

Reduction never raises and never mutates its input: each call returns a new
mapping, and Session models are frozen so existing snapshots stay valid.
Any other event for a known session only touches last_event.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from eocc.schemas.events import HookEvent
from eocc.schemas.state import Session, SessionStatus

__all__ = [
    'SessionMap',
    'reduce_event',
    'reduce_events',
]

SessionMap = Mapping[str, Session]


def reduce_event(sessions: SessionMap, event: HookEvent) -> dict[str, Session]:
    """
    Apply one event to the session map.

    Args:
        sessions: Current sessions keyed by session key
        event: Event to apply

    Returns:
        New session map (the input is left untouched)
    """
    key = event.session_key
    result = dict(sessions)

    match event.kind:
        case 'session_start':
            result[key] = Session(
                project_name=event.project_name,
                project_dir=event.project_dir,
                session_id=event.session_id,
                status='Active',
                last_event=event.timestamp,
                waiting_for='',
            )
            return result
        case 'session_end':
            result.pop(key, None)
            return result

    existing = result.get(key)
    if existing is None:
        # Sessions only come into existence via session_start
        return result

    match event.kind:
        case 'notification' if event.notification_type == 'permission_prompt':
            result[key] = _transition(existing, event, 'WaitingPermission', event.message or event.tool_name)
        case 'notification' if event.notification_type == 'idle_prompt':
            result[key] = _transition(existing, event, 'WaitingInput', event.message)
        case 'stop':
            result[key] = _transition(existing, event, 'Completed', '')
        case 'post_tool_use' | 'user_prompt_submit':
            result[key] = _transition(existing, event, 'Active', '')
        case _:
            result[key] = existing.model_copy(update={'last_event': event.timestamp})

    return result


def reduce_events(sessions: SessionMap, events: Iterable[HookEvent]) -> dict[str, Session]:
    """Fold a sequence of events over the session map, in order."""
    result = dict(sessions)
    for event in events:
        result = reduce_event(result, event)
    return result


def _transition(session: Session, event: HookEvent, status: SessionStatus, waiting_for: str) -> Session:
    update: dict[str, str] = {
        'status': status,
        'last_event': event.timestamp,
        'waiting_for': waiting_for,
    }
    if event.session_id:
        update['session_id'] = event.session_id
    return session.model_copy(update=update)
