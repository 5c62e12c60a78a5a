"""
In-Memory Record Store

Keeps every value in a process-local dict. Used by the test suite and for
throwaway runs; it honours the same quota semantics as the file store so
purge-and-retry behaviour can be exercised without touching disk.
"""

import logging
from typing import Optional

from tableside.services.store.base import (
    BaseRecordStore,
    StoreError,
    StoreQuotaExceeded,
)

logger = logging.getLogger(__name__)


class MemoryRecordStore(BaseRecordStore):
    """
    Dict-backed record store.

    Attributes:
        quota_bytes: Optional limit on the summed UTF-8 size of all values
        fail_reads: Keys whose reads raise StoreError (fault injection)
        fail_writes: Keys whose writes raise StoreError (fault injection)
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._revisions: dict[str, int] = {}
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()
        logger.info(f"MemoryRecordStore initialized (quota={quota_bytes or 'unlimited'})")

    @property
    def backend_name(self) -> str:
        return "memory"

    def _size_without(self, key: str) -> int:
        return sum(
            len(value.encode("utf-8"))
            for k, value in self._data.items()
            if k != key
        )

    async def get(self, key: str) -> Optional[str]:
        if key in self.fail_reads:
            raise StoreError(f"Simulated read failure for {key!r}", key=key)
        return self._data.get(key)

    async def set(self, key: str, value: str) -> int:
        if key in self.fail_writes:
            raise StoreError(f"Simulated write failure for {key!r}", key=key)

        if self.quota_bytes is not None:
            required = self._size_without(key) + len(value.encode("utf-8"))
            if required > self.quota_bytes:
                raise StoreQuotaExceeded(key, required, self.quota_bytes)

        self._data[key] = value
        self._revisions[key] = self._revisions.get(key, 0) + 1
        return self._revisions[key]

    async def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        self._revisions[key] = self._revisions.get(key, 0) + 1
        return True

    async def keys(self) -> list[str]:
        return list(self._data)

    async def revision(self, key: str) -> int:
        return self._revisions.get(key, 0)
