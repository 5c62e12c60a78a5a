"""
Record Store Factory

Returns the record store selected by STORE_BACKEND / ENV_MODE.

Environment Switching:
    - STORE_BACKEND=memory → MemoryRecordStore (tests)
    - ENV_MODE=development → JsonFileRecordStore (data directory)
    - ENV_MODE=staging/production → SqlRecordStore (DATABASE_URL)
"""

import logging
from functools import lru_cache

from tableside.core.config import StoreBackend, get_settings
from tableside.services.store.base import (
    BaseRecordStore,
    StoreError,
    StoreQuotaExceeded,
)
from tableside.services.store.file import JsonFileRecordStore
from tableside.services.store.memory import MemoryRecordStore
from tableside.services.store.repository import (
    ORDERS_KEY,
    TABLE_SESSIONS_KEY,
    RecordRepository,
    qr_codes_key,
)
from tableside.services.store.sql import SqlRecordStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_record_store() -> BaseRecordStore:
    """Get the configured record store (cached per process)."""
    settings = get_settings()
    backend = settings.resolved_store_backend

    if backend == StoreBackend.MEMORY:
        logger.info("Record Store: Using MemoryRecordStore")
        return MemoryRecordStore(quota_bytes=settings.store_quota_bytes)
    if backend == StoreBackend.FILE:
        logger.info(f"Record Store: Using JsonFileRecordStore ({settings.env_mode.value} mode)")
        return JsonFileRecordStore(
            directory=settings.data_directory,
            lock_timeout=settings.store_lock_timeout,
            quota_bytes=settings.store_quota_bytes,
        )

    logger.info(f"Record Store: Using SqlRecordStore ({settings.env_mode.value} mode)")
    return SqlRecordStore(settings.database_url, echo=settings.debug)


def reset_record_store() -> None:
    """Clear the cached store instance."""
    get_record_store.cache_clear()


__all__ = [
    "get_record_store",
    "reset_record_store",
    "BaseRecordStore",
    "StoreError",
    "StoreQuotaExceeded",
    "MemoryRecordStore",
    "JsonFileRecordStore",
    "SqlRecordStore",
    "RecordRepository",
    "ORDERS_KEY",
    "TABLE_SESSIONS_KEY",
    "qr_codes_key",
]
