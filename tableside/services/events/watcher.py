"""
Storage Watcher

The storage-change channel: notices writes made to the record store by
another execution context (a Celery worker, a second web process, a manual
edit) and publishes ``StorageChanged`` so listeners reload.
"""

import logging
from typing import Iterable

from tableside.services.events.dispatcher import EventDispatcher
from tableside.services.events.messages import StorageChanged
from tableside.services.periodic import PeriodicTask
from tableside.services.store.repository import (
    ORDERS_KEY,
    TABLE_SESSIONS_KEY,
    RecordRepository,
)

logger = logging.getLogger(__name__)


class StorageWatcher(PeriodicTask):
    """Polls store revisions of the watched keys."""

    name = "storage-watcher"

    def __init__(
        self,
        repository: RecordRepository,
        dispatcher: EventDispatcher,
        keys: Iterable[str] = (ORDERS_KEY, TABLE_SESSIONS_KEY),
        interval: float = 1.0,
    ):
        super().__init__(interval)
        self.repository = repository
        self.dispatcher = dispatcher
        self.keys = list(keys)

    async def prime(self) -> None:
        """Record current revisions without notifying anyone."""
        await self.repository.changed_keys(self.keys)

    async def tick(self) -> int:
        """
        Publish one StorageChanged per key written elsewhere since last look.

        Returns:
            int: Number of notifications published
        """
        changed = await self.repository.changed_keys(self.keys)
        for key, revision in changed.items():
            logger.info(f"External change detected on {key} (revision {revision})")
            await self.dispatcher.publish(StorageChanged(key=key, revision=revision))
        return len(changed)
