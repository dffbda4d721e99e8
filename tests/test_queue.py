"""Tests for the queue drain loop: rotation, parsing, recovery and shutdown."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from eocc.schemas.events import parse_event_line
from eocc.schemas.state import StateSnapshot
from eocc.services.queue import QueueDrainService
from eocc.services.store import StateStore
from eocc.storage.snapshot import SnapshotFileStorage

from .conftest import EventFactory, LineFactory, RecordingLogger


def _drain(store: StateStore, queue_path: Path, **kwargs) -> QueueDrainService:
    return QueueDrainService(queue_path, store, poll_interval=0.05, **kwargs)


def _leftovers(queue_path: Path) -> list[str]:
    return sorted(p.name for p in queue_path.parent.glob('events.processing.*.jsonl'))


def test_malformed_line_is_skipped(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None], recording_logger: RecordingLogger
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path, log=recording_logger)
    append(queue_path, event_line('session_start', 'api'), '{"timestamp": "t1", "event": \n', event_line('stop', 'api'))

    result = asyncio.run(drain.drain_once())

    assert result.events_applied == 2
    assert result.lines_skipped == 1
    assert not result.aborted
    assert store.sessions['/work/api'].status == 'Completed'
    assert any('line 2' in message for message in recording_logger.at('warning'))


def test_rotation_recreates_empty_queue(queue_path: Path, event_line: LineFactory, append: Callable[..., None]) -> None:
    drain = _drain(StateStore(), queue_path)
    append(queue_path, event_line())

    result = asyncio.run(drain.drain_once())

    assert result.rotated is not None
    assert result.rotated.name.startswith('events.processing.')
    assert queue_path.exists()
    assert queue_path.stat().st_size == 0


def test_rotated_file_is_deleted_by_next_cycle(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None]
) -> None:
    drain = _drain(StateStore(), queue_path)
    append(queue_path, event_line())

    first = asyncio.run(drain.drain_once())

    assert first.rotated is not None
    assert _leftovers(queue_path) == [first.rotated.name]

    second = asyncio.run(drain.drain_once())

    assert second.files_processed == 1
    assert second.events_applied == 0
    assert _leftovers(queue_path) == []


def test_empty_queue_is_not_rotated(queue_path: Path) -> None:
    drain = _drain(StateStore(), queue_path)

    result = asyncio.run(drain.drain_once())

    assert result.rotated is None
    assert result.files_processed == 0
    assert queue_path.exists()


def test_append_after_rotation_is_picked_up_next_cycle(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None]
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'))
    asyncio.run(drain.drain_once())

    append(queue_path, event_line('notification', 'api', notification_type='idle_prompt', message='waiting'))
    result = asyncio.run(drain.drain_once())

    assert result.events_applied == 1
    assert store.sessions['/work/api'].status == 'WaitingInput'


def test_writer_that_opened_before_rotation_is_not_lost(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None]
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'))

    with open(queue_path, 'a', encoding='utf-8') as late_writer:
        asyncio.run(drain.drain_once())
        late_writer.write(event_line('stop', 'api'))

    asyncio.run(drain.drain_once())

    assert store.sessions['/work/api'].status == 'Completed'
    assert _leftovers(queue_path) == []


def test_interleaved_appenders_during_rotation(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None]
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'), event_line('session_start', 'web'))

    with open(queue_path, 'a', encoding='utf-8') as writer_a:
        asyncio.run(drain.drain_once())
        # One appender was mid-append at rotation, the other starts after it
        writer_a.write(event_line('stop', 'api'))
        append(queue_path, event_line('notification', 'web', notification_type='idle_prompt'))

    asyncio.run(drain.drain_once())

    assert store.sessions['/work/api'].status == 'Completed'
    assert store.sessions['/work/web'].status == 'WaitingInput'
    assert len(store.history) == 4


def test_trailing_fragment_waits_for_final_read(queue_path: Path, event_line: LineFactory) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    queue_path.write_text(event_line('session_start', 'api') + event_line('stop', 'api').rstrip('\n'), encoding='utf-8')

    first = asyncio.run(drain.drain_once())
    second = asyncio.run(drain.drain_once())

    assert first.events_applied == 1
    assert second.events_applied == 1
    assert store.sessions['/work/api'].status == 'Completed'


def test_flush_finishes_kept_files(queue_path: Path, event_line: LineFactory, append: Callable[..., None]) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'))
    asyncio.run(drain.drain_once())

    result = asyncio.run(drain.flush())

    assert result.files_processed == 1
    assert _leftovers(queue_path) == []


def test_orphaned_processing_files_are_replayed_in_order(queue_path: Path, event_line: LineFactory) -> None:
    older = queue_path.parent / 'events.processing.00000000000000000001.aaaaaaaa.jsonl'
    newer = queue_path.parent / 'events.processing.00000000000000000002.aaaaaaaa.jsonl'
    newer.write_text(event_line('stop', 'api', timestamp='t2'), encoding='utf-8')
    older.write_text(event_line('session_start', 'api', timestamp='t1'), encoding='utf-8')
    store = StateStore()

    result = asyncio.run(_drain(store, queue_path).drain_once())

    assert result.files_processed == 2
    assert store.sessions['/work/api'].status == 'Completed'
    assert _leftovers(queue_path) == []


def test_crash_after_persist_does_not_double_apply(
    tmp_path: Path, queue_path: Path, event_line: LineFactory
) -> None:
    storage = SnapshotFileStorage(tmp_path / 'runtime_state.json')
    content = event_line('session_start', 'api', timestamp='t1') + event_line('stop', 'api', timestamp='t2')
    orphan = queue_path.parent / 'events.processing.00000000000000000001.aaaaaaaa.jsonl'
    orphan.write_text(content, encoding='utf-8')
    # The previous process applied and persisted the file, then died before deleting it
    asyncio.run(
        StateStore(storage).apply_events(
            [parse_event_line(line) for line in content.splitlines()],
            source=orphan.name,
            offset=len(content.encode()),
        )
    )

    store = StateStore(storage)
    asyncio.run(store.load())
    result = asyncio.run(_drain(store, queue_path).recover())

    assert result.files_processed == 1
    assert result.events_applied == 0
    assert len(store.history) == 2
    assert store.sessions['/work/api'].status == 'Completed'
    assert not orphan.exists()
    assert store.consumed_offset(orphan.name) == 0


def test_recovery_keeps_identical_events_from_the_same_second(queue_path: Path, event_line: LineFactory) -> None:
    read = event_line('post_tool_use', 'api', timestamp='2026-01-05T10:00:01Z', matcher='Read', tool_name='Read')
    orphan = queue_path.parent / 'events.processing.00000000000000000001.aaaaaaaa.jsonl'
    orphan.write_text(event_line('session_start', 'api') + read + read, encoding='utf-8')
    store = StateStore()

    result = asyncio.run(_drain(store, queue_path).recover())

    assert result.events_applied == 3
    assert len(store.history) == 3


def test_recovery_applies_event_equal_to_one_already_in_history(
    tmp_path: Path, queue_path: Path, event_line: LineFactory
) -> None:
    storage = SnapshotFileStorage(tmp_path / 'runtime_state.json')
    bash = event_line('post_tool_use', 'api', timestamp='2026-01-05T10:00:05Z', tool_name='Bash')
    stop = event_line('stop', 'api', timestamp='2026-01-05T10:00:05Z')
    # Applied from an earlier file that was already deleted
    asyncio.run(
        StateStore(storage).apply_events([parse_event_line(line) for line in (event_line('session_start'), bash, stop)])
    )
    orphan = queue_path.parent / 'events.processing.00000000000000000002.aaaaaaaa.jsonl'
    orphan.write_text(bash, encoding='utf-8')

    store = StateStore(storage)
    asyncio.run(store.load())
    result = asyncio.run(_drain(store, queue_path).recover())

    assert result.events_applied == 1
    assert len(store.history) == 4
    assert store.sessions['/work/api'].status == 'Active'


def test_recovery_resumes_partially_applied_file(
    tmp_path: Path, queue_path: Path, event_line: LineFactory, recording_logger: RecordingLogger
) -> None:
    storage = SnapshotFileStorage(tmp_path / 'runtime_state.json')
    first = event_line('session_start', 'api')
    orphan = queue_path.parent / 'events.processing.00000000000000000001.aaaaaaaa.jsonl'
    orphan.write_text(
        first + event_line('notification', 'api', notification_type='idle_prompt') + event_line('stop', 'api'),
        encoding='utf-8',
    )
    asyncio.run(
        StateStore(storage).apply_events([parse_event_line(first)], source=orphan.name, offset=len(first.encode()))
    )

    store = StateStore(storage)
    asyncio.run(store.load())
    result = asyncio.run(_drain(store, queue_path, log=recording_logger).recover())

    assert result.events_applied == 2
    assert [event.kind for event in store.history] == ['session_start', 'notification', 'stop']
    assert store.sessions['/work/api'].status == 'Completed'
    assert any('resuming' in message for message in recording_logger.at('info'))
    assert store.consumed_offset(orphan.name) == 0


def test_recovery_forgets_offsets_of_files_that_are_gone(
    tmp_path: Path, queue_path: Path, make_event: EventFactory
) -> None:
    storage = SnapshotFileStorage(tmp_path / 'runtime_state.json')
    asyncio.run(StateStore(storage).apply_events([make_event()], source='events.processing.gone.jsonl', offset=80))

    store = StateStore(storage)
    asyncio.run(store.load())
    asyncio.run(_drain(store, queue_path).recover())

    assert store.consumed_offset('events.processing.gone.jsonl') == 0


def test_each_processing_file_is_committed_separately(
    tmp_path: Path, queue_path: Path, event_line: LineFactory, append: Callable[..., None]
) -> None:
    storage = SnapshotFileStorage(tmp_path / 'runtime_state.json')
    store = StateStore(storage)
    published: list[StateSnapshot] = []
    store.subscribe(published.append)
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'))
    first = asyncio.run(drain.drain_once())
    assert first.rotated is not None

    append(first.rotated, event_line('session_start', 'web'))
    kept_size = first.rotated.stat().st_size
    append(queue_path, event_line('stop', 'api'))
    published.clear()
    second = asyncio.run(drain.drain_once())

    assert second.rotated is not None
    assert second.events_applied == 2
    assert [len(snapshot.sessions) for snapshot in published] == [2, 2]
    assert [len(snapshot.events) for snapshot in published] == [2, 3]
    assert dict(published[0].consumed) == {first.rotated.name: kept_size}
    assert json.loads(storage.path.read_text(encoding='utf-8'))['consumed'] == {
        second.rotated.name: second.rotated.stat().st_size
    }


def test_crash_before_persist_replays_everything(queue_path: Path, event_line: LineFactory) -> None:
    orphan = queue_path.parent / 'events.processing.00000000000000000001.aaaaaaaa.jsonl'
    orphan.write_text(event_line('session_start', 'api') + event_line('stop', 'api'), encoding='utf-8')
    store = StateStore()

    result = asyncio.run(_drain(store, queue_path).recover())

    assert result.events_applied == 2
    assert store.sessions['/work/api'].status == 'Completed'


def test_rotation_failure_keeps_queue_intact(
    queue_path: Path,
    event_line: LineFactory,
    append: Callable[..., None],
    recording_logger: RecordingLogger,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path, log=recording_logger)
    line = event_line('session_start', 'api')
    append(queue_path, line)

    def failing_rename(src: object, dst: object) -> None:
        raise PermissionError('read-only directory')

    monkeypatch.setattr(os, 'rename', failing_rename)
    result = asyncio.run(drain.drain_once())

    assert result.aborted
    assert queue_path.read_text(encoding='utf-8') == line
    assert store.sessions == {}
    assert recording_logger.at('error')

    monkeypatch.undo()
    result = asyncio.run(drain.drain_once())

    assert not result.aborted
    assert list(store.sessions) == ['/work/api']


def test_delete_failure_retries_delete_without_reapplying(
    queue_path: Path, event_line: LineFactory, append: Callable[..., None], monkeypatch: pytest.MonkeyPatch
) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    append(queue_path, event_line('session_start', 'api'), event_line('stop', 'api'))
    asyncio.run(drain.drain_once())
    real_unlink = Path.unlink

    def failing_unlink(self: Path, missing_ok: bool = False) -> None:
        if '.processing.' in self.name:
            raise PermissionError('busy')
        real_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, 'unlink', failing_unlink)
    failed = asyncio.run(drain.drain_once())

    assert failed.aborted
    assert len(store.history) == 2
    assert len(_leftovers(queue_path)) == 1

    monkeypatch.undo()
    retried = asyncio.run(drain.drain_once())

    assert not retried.aborted
    assert retried.files_processed == 1
    assert retried.events_applied == 0
    assert len(store.history) == 2
    assert _leftovers(queue_path) == []


def test_run_stops_on_stop_event(queue_path: Path, event_line: LineFactory, append: Callable[..., None]) -> None:
    store = StateStore()
    drain = _drain(store, queue_path)
    stop_event = asyncio.Event()
    store.subscribe(lambda snapshot: stop_event.set())
    append(queue_path, event_line('session_start', 'api'))

    asyncio.run(asyncio.wait_for(drain.run(stop_event), timeout=5))

    assert list(store.sessions) == ['/work/api']
    assert _leftovers(queue_path) == []


def test_stop_ends_run_between_cycles(queue_path: Path) -> None:
    drain = _drain(StateStore(), queue_path)

    async def scenario() -> None:
        asyncio.get_running_loop().call_later(0.1, drain.stop)
        await asyncio.wait_for(drain.run(), timeout=5)

    asyncio.run(scenario())

    assert queue_path.exists()


def test_rejects_non_positive_poll_interval(queue_path: Path) -> None:
    with pytest.raises(ValueError):
        QueueDrainService(queue_path, StateStore(), poll_interval=0)
