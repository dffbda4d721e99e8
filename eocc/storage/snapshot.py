"""
Runtime state persistence.

Stores the StateSnapshot as runtime_state.json:

    {"sessions": [{...Session...}, ...], "events": [{...HookEvent...}, ...],
     "consumed": {"events.processing.<name>.jsonl": <bytes applied>, ...}}

Writes go to a temporary file in the same directory which is then renamed
over the target, so a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
import pathlib
import tempfile
from typing import Any

import pydantic

from eocc.exceptions import SnapshotError
from eocc.schemas.state import StateSnapshot

__all__ = ['SnapshotFileStorage', 'migrate_legacy_snapshot']


def migrate_legacy_snapshot(data: dict[str, Any]) -> dict[str, Any]:
    """
    Convert the original desktop app's layout to the current one.

    The desktop app stored sessions as an object keyed by project directory and
    the history under 'recent_events'. Current documents pass through unchanged.
    """
    migrated = dict(data)
    sessions = migrated.get('sessions')
    if isinstance(sessions, dict):
        migrated['sessions'] = [sessions[key] for key in sorted(sessions)]
    if 'events' not in migrated and 'recent_events' in migrated:
        migrated['events'] = migrated.pop('recent_events')
    else:
        migrated.pop('recent_events', None)
    return migrated


class SnapshotFileStorage:
    """Local filesystem storage for the runtime state snapshot."""

    def __init__(self, path: pathlib.Path) -> None:
        """
        Initialize snapshot storage.

        Args:
            path: Location of runtime_state.json (parent is created on first save)
        """
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> StateSnapshot | None:
        """
        Read the persisted snapshot.

        Returns:
            The snapshot, or None if no snapshot has been written yet

        Raises:
            SnapshotError: If the file cannot be read or does not hold a valid snapshot
        """
        try:
            content = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotError(self.path, f'cannot read: {e}') from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SnapshotError(self.path, f'invalid JSON: {e.msg}') from e

        if not isinstance(data, dict):
            raise SnapshotError(self.path, f'expected a JSON object, got {type(data).__name__}')

        try:
            return StateSnapshot.model_validate(migrate_legacy_snapshot(data))
        except pydantic.ValidationError as e:
            raise SnapshotError(self.path, f'invalid snapshot: {e.error_count()} validation errors') from e

    def save(self, snapshot: StateSnapshot) -> pathlib.Path:
        """
        Atomically replace the persisted snapshot.

        Args:
            snapshot: Snapshot to persist

        Returns:
            Path of the written file

        Raises:
            SnapshotError: If the snapshot cannot be written
        """
        payload = snapshot.model_dump(mode='json', by_alias=True)
        content = json.dumps(payload, indent=2, ensure_ascii=False)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f'.{self.path.name}.', suffix='.tmp', dir=self.path.parent)
            temp_path = pathlib.Path(temp_name)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, self.path)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise SnapshotError(self.path, f'cannot write: {e}') from e

        return self.path
