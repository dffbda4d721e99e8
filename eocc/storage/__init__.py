"""Storage backends for monitor runtime state."""

from eocc.storage.snapshot import SnapshotFileStorage, migrate_legacy_snapshot

__all__ = ['SnapshotFileStorage', 'migrate_legacy_snapshot']
