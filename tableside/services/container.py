"""
Service Container

Builds and owns one set of collaborating services: record store,
repository, event dispatcher, order engine, table reconciler and the two
periodic tasks. The web app creates one at startup and tears it down at
shutdown; Celery tasks build a short-lived one per run.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from tableside.core.config import Settings, get_settings
from tableside.services.events import EventDispatcher, StorageWatcher
from tableside.services.orders import AnalyticsRecorder, OrderLifecycleEngine
from tableside.services.store import BaseRecordStore, RecordRepository, get_record_store
from tableside.services.tables import SweepScheduler, TableSessionReconciler

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything the HTTP layer and the workers talk to."""
    settings: Settings
    store: BaseRecordStore
    repository: RecordRepository
    dispatcher: EventDispatcher
    engine: OrderLifecycleEngine
    reconciler: TableSessionReconciler
    scheduler: SweepScheduler
    watcher: StorageWatcher

    async def start(self, background: Optional[bool] = None) -> None:
        """
        Open the dispatcher, wire the reconciler, provision tables and,
        unless disabled, start the sweep scheduler and storage watcher.
        """
        if background is None:
            background = self.settings.enable_background_sweeps

        self.dispatcher.start()
        self.reconciler.attach()
        tables = await self.reconciler.materialize_tables(self.settings.default_restaurant_id)
        logger.info(f"✅ {len(tables)} table(s) materialized for {self.settings.default_restaurant_id}")

        await self.watcher.prime()
        if background:
            self.scheduler.start()
            self.watcher.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.watcher.stop()
        self.reconciler.detach()
        self.dispatcher.close()
        await self.store.close()


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[BaseRecordStore] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> ServiceContainer:
    """Wire a container from settings, optionally with a given store/dispatcher."""
    settings = settings or get_settings()
    store = store or get_record_store()
    dispatcher = dispatcher or EventDispatcher(name="tableside")

    repository = RecordRepository(store, purgeable_keys=settings.purgeable_keys_list)
    engine = OrderLifecycleEngine(
        repository,
        dispatcher,
        analytics=AnalyticsRecorder(repository),
        tax_rate=settings.tax_rate,
    )
    reconciler = TableSessionReconciler(
        repository,
        engine,
        dispatcher,
        stale_after=timedelta(minutes=settings.stale_order_minutes),
        full_sweep_every=settings.full_sweep_every,
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        repository=repository,
        dispatcher=dispatcher,
        engine=engine,
        reconciler=reconciler,
        scheduler=SweepScheduler(reconciler, interval=settings.sweep_interval_seconds),
        watcher=StorageWatcher(
            repository,
            dispatcher,
            interval=settings.storage_watch_interval_seconds,
        ),
    )
