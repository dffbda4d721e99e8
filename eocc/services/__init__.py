"""Service layer: reduction, history, state store and queue draining."""

from eocc.services.history import EventHistory
from eocc.services.monitor import MonitorService
from eocc.services.queue import DrainResult, QueueDrainService
from eocc.services.reducer import reduce_event, reduce_events
from eocc.services.store import StateStore

__all__ = [
    'DrainResult',
    'EventHistory',
    'MonitorService',
    'QueueDrainService',
    'StateStore',
    'reduce_event',
    'reduce_events',
]
