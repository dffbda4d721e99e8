"""
Queue drain service - lossless hand-off from the hook script's queue file.

The hook script appends one JSON line per invocation to events.jsonl
(open-append-write-close, possibly several invocations at once). This service
is the only reader, and it never reads the live queue file in place:

    tick:
      1. rename events.jsonl -> events.processing.<time_ns>.<rand>.jsonl
      2. recreate an empty events.jsonl
      3. for each processing file in name order: parse complete lines and
         apply them to the store
      4. delete every processing file except the one rotated this tick

The rename happens inside one directory, so it is atomic. An append either
lands before the rename (it is in the processing file) or after it (it lands
in the recreated queue and is picked up next tick). The queue path always
exists, so an appender never loses a write to a missing file.

A writer that opened the queue just before the rename still writes into the
renamed file. The file rotated this tick is therefore kept for one more tick:
its new bytes are read from the saved offset and only then is it deleted.

A processing file is deleted only after its events are applied and persisted.
The persisted snapshot records how many bytes of each file were applied, so
if the process dies in between, recover() resumes the file from that offset:
nothing is applied twice and nothing after the offset is skipped.

The store publishes and persists once per processing file that yielded
events, not once per tick. Each persisted offset must cover exactly the
events applied before it, so a tick that finishes the kept file and then
reads a fresh rotation writes runtime_state.json twice.

Error policy:
- A malformed line is logged and skipped; the rest of the file is processed.
- A filesystem error aborts the current cycle; everything is retried next tick.
  The queue file itself is never deleted.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from pathlib import Path

import attrs

from eocc.exceptions import EventParseError, QueueError
from eocc.protocols import LoggerProtocol, NullLogger
from eocc.schemas.events import HookEvent, parse_event_line
from eocc.services.store import StateStore

__all__ = [
    'DEFAULT_POLL_INTERVAL',
    'DrainResult',
    'QueueDrainService',
]

DEFAULT_POLL_INTERVAL = 0.5


@attrs.define
class DrainResult:
    """Outcome of one drain cycle (or of startup recovery)."""

    rotated: Path | None = None  # Processing file created by this cycle's rotation
    files_processed: int = 0  # Processing files deleted
    events_applied: int = 0
    lines_skipped: int = 0
    aborted: bool = False  # A filesystem error cut the cycle short

    def merge(self, other: DrainResult) -> DrainResult:
        return DrainResult(
            rotated=other.rotated or self.rotated,
            files_processed=self.files_processed + other.files_processed,
            events_applied=self.events_applied + other.events_applied,
            lines_skipped=self.lines_skipped + other.lines_skipped,
            aborted=self.aborted or other.aborted,
        )


@attrs.define
class _ReadPosition:
    """How far a kept processing file has been consumed."""

    offset: int = 0  # Bytes up to the end of the last complete line
    line_number: int = 0


class QueueDrainService:
    """
    Polls the queue file and feeds its lines through the parser into the store.

    Single consumer: exactly one instance may drain a given queue directory.
    """

    def __init__(
        self,
        queue_path: Path,
        store: StateStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        log: LoggerProtocol | None = None,
    ) -> None:
        """
        Initialize drain service.

        Args:
            queue_path: Live queue file the hook script appends to (events.jsonl)
            store: State store receiving parsed events
            poll_interval: Seconds between ticks
            log: Logger for skipped lines and filesystem errors
        """
        if poll_interval <= 0:
            raise ValueError(f'Poll interval must be positive, got {poll_interval}')

        self.queue_path = queue_path
        self.queue_dir = queue_path.parent
        self.store = store
        self.poll_interval = poll_interval
        self.log: LoggerProtocol = log or NullLogger()

        self._stop_event = asyncio.Event()
        self._recovered = False
        # Partially consumed files, kept one tick for late writers
        self._positions: dict[Path, _ReadPosition] = {}
        # Applied to the store, but the unlink failed: only the delete is retried
        self._awaiting_delete: set[Path] = set()

    # ==========================================================================
    # Naming
    # ==========================================================================

    @property
    def processing_glob(self) -> str:
        return f'{self.queue_path.stem}.processing.*{self.queue_path.suffix}'

    def new_processing_path(self) -> Path:
        """Unique processing file name; lexical order is rotation order."""
        token = f'{time.time_ns():020d}.{uuid.uuid4().hex[:8]}'
        return self.queue_dir / f'{self.queue_path.stem}.processing.{token}{self.queue_path.suffix}'

    def pending_files(self) -> list[Path]:
        """Processing files not yet deleted, oldest rotation first."""
        return sorted(self.queue_dir.glob(self.processing_glob), key=lambda path: path.name)

    # ==========================================================================
    # Cycle
    # ==========================================================================

    async def recover(self) -> DrainResult:
        """
        Replay processing files left behind by a previous process.

        Must run before the first rotation. Each file is read from the offset
        the store persisted for it, so events applied before the crash are not
        applied again. Ledger entries for files that no longer exist are dropped.
        """
        result = DrainResult()
        orphans = self.pending_files()
        if orphans:
            await self.log.warning(f'Found {len(orphans)} unprocessed queue file(s) from a previous run, replaying')

        for path in orphans:
            resume_at = self.store.consumed_offset(path.name)
            if resume_at:
                await self.log.info(f'{path.name}: first {resume_at} bytes were applied before restart, resuming')
            try:
                result = result.merge(await self._consume(path, keep=False))
            except QueueError as e:
                await self.log.error(f'Recovery aborted, will retry next tick: {e}')
                result.aborted = True
                return result

        self.store.retain_sources(path.name for path in self.pending_files())
        self._recovered = True
        return result

    async def drain_once(self) -> DrainResult:
        """
        Run one poll-rotate-parse-reduce cycle.

        Events from the file rotated by this cycle are applied right away; the
        file itself is deleted by the next cycle.

        Returns:
            Counters for the cycle; aborted=True if a filesystem error stopped it
        """
        result = DrainResult()
        if not self._recovered:
            result = await self.recover()
            if result.aborted:
                return result

        try:
            result.rotated = await self._rotate()
        except QueueError as e:
            await self.log.error(f'Rotation failed, will retry next tick: {e}')
            result.aborted = True
            return result

        return result.merge(await self._consume_pending(keep=result.rotated))

    async def flush(self) -> DrainResult:
        """
        Finish every processing file without rotating.

        Used on shutdown and by one-shot drains so no rotated file is left behind.
        """
        return await self._consume_pending(keep=None)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Poll until stopped.

        A stop request is honoured between cycles, so a processing file is never
        left half-consumed by a clean shutdown.

        Args:
            stop_event: External stop signal (defaults to the one set by stop())
        """
        if stop_event is not None:
            self._stop_event = stop_event

        await self.log.info(f'Watching {self.queue_path} every {self.poll_interval}s')

        while not self._stop_event.is_set():
            try:
                await self.drain_once()
            except Exception as e:
                # The live view must outlive any single bad cycle
                await self.log.error(f'Unexpected error in drain cycle: {e!r}')

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass

        await self.flush()
        await self.log.info('Queue drain stopped')

    def stop(self) -> None:
        """Request shutdown after the current cycle."""
        self._stop_event.set()

    async def _consume_pending(self, keep: Path | None) -> DrainResult:
        result = DrainResult()
        for path in self.pending_files():
            try:
                result = result.merge(await self._consume(path, keep=path == keep))
            except QueueError as e:
                await self.log.error(f'Drain cycle aborted, will retry next tick: {e}')
                result.aborted = True
                return result
        return result

    # ==========================================================================
    # Filesystem steps
    # ==========================================================================

    def ensure_queue(self) -> None:
        """Create the queue directory and an empty queue file if missing."""
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        # No truncation: an appender may have recreated it with content already
        self.queue_path.touch(exist_ok=True)

    async def _rotate(self) -> Path | None:
        try:
            self.ensure_queue()
            if self.queue_path.stat().st_size == 0:
                return None
            target = self.new_processing_path()
            os.rename(self.queue_path, target)
        except OSError as e:
            raise QueueError('rotate', self.queue_path, e) from e

        try:
            self.queue_path.touch(exist_ok=True)
        except OSError as e:
            # Appenders create the file themselves; ensure_queue retries next tick
            await self.log.warning(f'Could not recreate {self.queue_path}: {e}')

        await self.log.info(f'Rotated queue to {target.name}')
        return target

    async def _consume(self, path: Path, keep: bool) -> DrainResult:
        """
        Apply the unread part of one processing file, then delete it unless kept.

        A kept file only has its complete lines consumed; a trailing fragment
        waits for the final read.
        """
        if path in self._awaiting_delete:
            self._delete(path)
            return DrainResult(files_processed=1)

        position = self._positions.get(path) or _ReadPosition(offset=self.store.consumed_offset(path.name))
        events, skipped, position = await self._read_events(path, position, final=not keep)
        applied = await self.store.apply_events(events, source=path.name, offset=position.offset)

        if keep:
            self._positions[path] = position
            return DrainResult(events_applied=applied, lines_skipped=skipped)

        self._positions.pop(path, None)
        self._awaiting_delete.add(path)
        self._delete(path)
        return DrainResult(files_processed=1, events_applied=applied, lines_skipped=skipped)

    async def _read_events(
        self, path: Path, position: _ReadPosition, final: bool
    ) -> tuple[list[HookEvent], int, _ReadPosition]:
        events: list[HookEvent] = []
        skipped = 0
        offset = position.offset
        line_number = position.line_number
        remainder = b''

        try:
            with open(path, 'rb') as f:
                f.seek(offset)
                while chunk := f.read():
                    lines = (remainder + chunk).split(b'\n')
                    remainder = lines.pop()
                    for line in lines:
                        offset += len(line) + 1
                        line_number += 1
                        skipped += await self._parse_into(events, path, line, line_number)
        except OSError as e:
            raise QueueError('read', path, e) from e

        if final and remainder:
            offset += len(remainder)
            line_number += 1
            skipped += await self._parse_into(events, path, remainder, line_number)

        return events, skipped, _ReadPosition(offset, line_number)

    async def _parse_into(self, events: list[HookEvent], path: Path, line: bytes, line_number: int) -> int:
        line = line.strip()
        if not line:
            return 0
        try:
            events.append(parse_event_line(line, line_number))
        except EventParseError as e:
            await self.log.warning(f'{path.name}: skipping {e}')
            return 1
        return 0

    def _delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise QueueError('delete', path, e) from e
        self._awaiting_delete.discard(path)
        self.store.release(path.name)
