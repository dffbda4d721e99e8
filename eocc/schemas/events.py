"""
Hook event schema and line parser.

One line of the queue file is one JSON object written by the hook script:

    {"timestamp": "2026-01-05T10:00:00Z", "event": "notification", "matcher": "",
     "project_name": "api", "project_dir": "/work/api", "session_id": "...",
     "message": "Claude needs your permission to use Bash",
     "notification_type": "permission_prompt", "tool_name": "Bash"}

Decoding is forgiving about *content* (unknown event kinds become
'unknown', unknown keys are dropped, nulls become empty strings) and strict
about *shape* (invalid JSON, non-objects and a missing timestamp are errors).
"""

from __future__ import annotations

import json
from typing import Any, Literal, get_args

import pydantic

from eocc.exceptions import EventParseError
from eocc.schemas.types import PermissiveModel

__all__ = [
    'EVENT_KINDS',
    'NOTIFICATION_TYPES',
    'EventKind',
    'HookEvent',
    'NotificationType',
    'parse_event_line',
    'session_key',
]

# ==============================================================================
# Vocabulary
# ==============================================================================

EventKind = Literal[
    'session_start',
    'session_end',
    'notification',
    'stop',
    'post_tool_use',
    'user_prompt_submit',
    'unknown',
]

NotificationType = Literal['permission_prompt', 'idle_prompt', 'other']

EVENT_KINDS: frozenset[str] = frozenset(get_args(EventKind))
NOTIFICATION_TYPES: frozenset[str] = frozenset(get_args(NotificationType))

# Placeholder the hook script writes when $CLAUDE_PROJECT_DIR is not set
UNKNOWN_PROJECT_DIR = 'unknown'

_TEXT_FIELDS = ('matcher', 'project_name', 'project_dir', 'session_id', 'message', 'tool_name')


def session_key(project_dir: str, project_name: str) -> str:
    """Session identity: the project directory, falling back to the project name."""
    if project_dir and project_dir != UNKNOWN_PROJECT_DIR:
        return project_dir
    return project_name


# ==============================================================================
# Event Model
# ==============================================================================


class HookEvent(PermissiveModel):
    """A single hook invocation as recorded in the queue file."""

    timestamp: str = pydantic.Field(min_length=1)
    kind: EventKind = pydantic.Field(
        default='unknown',
        validation_alias=pydantic.AliasChoices('event', 'kind'),
        serialization_alias='event',
    )
    matcher: str = ''
    project_name: str = ''
    project_dir: str = ''
    session_id: str = ''
    message: str = ''
    notification_type: NotificationType = 'other'
    tool_name: str = ''
    raw_input: pydantic.JsonValue = None  # Kept verbatim for debugging, never interpreted

    @pydantic.field_validator('kind', mode='before')
    @classmethod
    def _coerce_kind(cls, value: Any) -> str:
        return value if isinstance(value, str) and value in EVENT_KINDS else 'unknown'

    @pydantic.field_validator('notification_type', mode='before')
    @classmethod
    def _coerce_notification_type(cls, value: Any) -> str:
        return value if isinstance(value, str) and value in NOTIFICATION_TYPES else 'other'

    @pydantic.field_validator(*_TEXT_FIELDS, mode='before')
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ''
        if isinstance(value, bool | int | float):
            return str(value)
        return value

    @property
    def session_key(self) -> str:
        """Key of the session this event belongs to."""
        return session_key(self.project_dir, self.project_name)


# ==============================================================================
# Line Parser
# ==============================================================================


def parse_event_line(line: bytes | str, line_number: int | None = None) -> HookEvent:
    """
    Decode one queue line into a HookEvent.

    Args:
        line: Raw line (with or without trailing newline)
        line_number: 1-based position in the processing file, for error messages

    Returns:
        Validated HookEvent

    Raises:
        EventParseError: If the line is not UTF-8, not a JSON object, or fails validation
    """
    if isinstance(line, bytes):
        try:
            line = line.decode('utf-8')
        except UnicodeDecodeError as e:
            raise EventParseError(f'not valid UTF-8 ({e.reason})', line_number) from e

    try:
        raw_data = json.loads(line)
    except json.JSONDecodeError as e:
        raise EventParseError(f'invalid JSON: {e.msg} at column {e.colno}', line_number) from e

    if not isinstance(raw_data, dict):
        raise EventParseError(f'expected a JSON object, got {type(raw_data).__name__}', line_number)

    try:
        return HookEvent.model_validate(raw_data)
    except pydantic.ValidationError as e:
        problems = '; '.join(
            f'{".".join(str(part) for part in error["loc"]) or "<root>"}: {error["msg"]}' for error in e.errors()
        )
        raise EventParseError(problems, line_number) from e
