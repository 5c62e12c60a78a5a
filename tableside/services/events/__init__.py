"""
Event Fabric

Custom event channel (EventDispatcher) plus the storage-change channel
(StorageWatcher). Both are hints to re-read the store.
"""

from tableside.services.events.dispatcher import EventDispatcher
from tableside.services.events.messages import (
    Event,
    OrderCompleted,
    OrderCreated,
    OrderStatusEvent,
    OrderUpdated,
    StorageChanged,
)
from tableside.services.events.watcher import StorageWatcher

__all__ = [
    "EventDispatcher",
    "Event",
    "OrderCompleted",
    "OrderCreated",
    "OrderStatusEvent",
    "OrderUpdated",
    "StorageChanged",
    "StorageWatcher",
]
