"""
Shared exceptions for eocc-monitor.

Domain-specific exceptions used across services.

Exception Hierarchy:
    MonitorError (base)
    ├── EventParseError (one queue line could not be decoded)
    ├── QueueError (rotation/read/delete failure on the queue directory)
    ├── SnapshotError (persisted runtime state could not be read or written)
    └── ConsumerLockError (another monitor already drains the queue)
"""

from __future__ import annotations

from pathlib import Path


class MonitorError(Exception):
    """Base exception for all eocc-monitor errors."""


class EventParseError(MonitorError):
    """Raised when a queue line is not a valid hook event."""

    def __init__(self, reason: str, line_number: int | None = None) -> None:
        self.reason = reason
        self.line_number = line_number
        location = f'line {line_number}: ' if line_number is not None else ''
        super().__init__(f'Invalid event ({location}{reason})')


class QueueError(MonitorError):
    """Raised when the queue file or a processing file cannot be handled."""

    def __init__(self, operation: str, path: Path, cause: OSError) -> None:
        self.operation = operation
        self.path = path
        self.cause = cause
        super().__init__(f'Queue {operation} failed for {path}: {cause}')


class SnapshotError(MonitorError):
    """Raised when the runtime state snapshot cannot be read or written."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f'Runtime state {path}: {reason}')


class ConsumerLockError(MonitorError):
    """Raised when another monitor process is already draining the queue."""

    def __init__(self, lock_file: Path) -> None:
        self.lock_file = lock_file
        super().__init__(f'Another monitor is already draining this queue (lock held on {lock_file})')
