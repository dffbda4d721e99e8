"""Shared fixtures for eocc-monitor tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from eocc.schemas.events import HookEvent

EventFactory = Callable[..., HookEvent]
LineFactory = Callable[..., str]


def _event_data(
    kind: str = 'session_start',
    project: str = 'api',
    timestamp: str = '2026-01-05T10:00:00Z',
    **fields: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        'timestamp': timestamp,
        'event': kind,
        'matcher': '',
        'project_name': project,
        'project_dir': f'/work/{project}',
        'session_id': f'session-{project}',
        'message': '',
    }
    data.update(fields)
    # Pass `field=...` to leave a key out entirely
    return {key: value for key, value in data.items() if value is not ...}


@pytest.fixture
def make_event() -> EventFactory:
    """Build a HookEvent the way the hook script would have written it."""

    def factory(kind: str = 'session_start', project: str = 'api', **fields: Any) -> HookEvent:
        return HookEvent.model_validate(_event_data(kind, project, **fields))

    return factory


@pytest.fixture
def event_line() -> LineFactory:
    """Build one queue line (JSON plus newline)."""

    def factory(kind: str = 'session_start', project: str = 'api', **fields: Any) -> str:
        return json.dumps(_event_data(kind, project, **fields)) + '\n'

    return factory


@pytest.fixture
def queue_path(tmp_path: Path) -> Path:
    """Location of the live queue file; the directory exists, the file does not."""
    log_dir = tmp_path / 'logs'
    log_dir.mkdir()
    return log_dir / 'events.jsonl'


def append_lines(path: Path, *lines: str) -> None:
    """Append like the hook script: open, write, close per line."""
    for line in lines:
        with open(path, 'a', encoding='utf-8') as f:
            f.write(line)


@pytest.fixture
def append() -> Callable[..., None]:
    return append_lines


class RecordingLogger:
    """LoggerProtocol implementation that keeps messages for assertions."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def info(self, message: str) -> None:
        self.messages.append(('info', message))

    async def warning(self, message: str) -> None:
        self.messages.append(('warning', message))

    async def error(self, message: str) -> None:
        self.messages.append(('error', message))

    def at(self, level: str) -> list[str]:
        return [message for lvl, message in self.messages if lvl == level]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
