"""
Monitor runtime - wires settings, storage, store and drain loop together.

Startup order matters:
1. claim the queue (one draining process per home directory)
2. restore the persisted snapshot
3. replay processing files orphaned by a crash
4. start polling the queue

A UI embeds the monitor by building a MonitorService, subscribing to its
store, and running run() as a task on its event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator

import attrs
import filelock

from eocc.config.base import BaseMonitorSettings
from eocc.exceptions import ConsumerLockError
from eocc.protocols import LoggerProtocol, NullLogger
from eocc.services.queue import DrainResult, QueueDrainService
from eocc.services.store import StateStore
from eocc.storage.snapshot import SnapshotFileStorage

__all__ = ['MonitorService']


@attrs.define(frozen=True)
class MonitorService:
    """
    Immutable container for the monitor's long-lived components.

    The store and drain service hold the mutable state; this object only
    fixes which instances belong together.
    """

    settings: BaseMonitorSettings
    store: StateStore
    drain: QueueDrainService
    log: LoggerProtocol

    @classmethod
    def from_settings(cls, settings: BaseMonitorSettings, log: LoggerProtocol | None = None) -> MonitorService:
        log = log or NullLogger()
        store = StateStore(
            storage=SnapshotFileStorage(settings.runtime_state_file),
            history_limit=settings.HISTORY_LIMIT,
            log=log,
        )
        drain = QueueDrainService(
            queue_path=settings.events_file,
            store=store,
            poll_interval=settings.POLL_INTERVAL,
            log=log,
        )
        return cls(settings=settings, store=store, drain=drain, log=log)

    async def start(self) -> DrainResult:
        """Restore persisted state, then replay orphaned processing files."""
        await self.store.load()
        return await self.drain.recover()

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Claim the queue, start, and poll until stop() is called or stop_event is set."""
        with self.claim_queue():
            await self.start()
            await self.drain.run(stop_event)

    def stop(self) -> None:
        self.drain.stop()

    @contextlib.contextmanager
    def claim_queue(self) -> Iterator[None]:
        """
        Hold the single-consumer lock for the duration of the block.

        Only monitor processes take this lock; the hook script never does.

        Raises:
            ConsumerLockError: If another monitor process holds it
        """
        lock_file = self.settings.lock_file
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        lock = filelock.FileLock(lock_file)
        try:
            lock.acquire(timeout=0)
        except filelock.Timeout as e:
            raise ConsumerLockError(lock_file) from e
        try:
            yield
        finally:
            lock.release()
