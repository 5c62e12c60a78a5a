"""
Record Store Abstract Base Class

Defines the key-value document store every collection lives in. Values are
JSON-encoded text; every write replaces the whole value, there are no
transactions and the last writer wins. Each key carries a revision that
changes on every write so other execution contexts can notice changes.

Implementations:
    - MemoryRecordStore: in-process dict (tests, ephemeral runs)
    - JsonFileRecordStore: one file per key, guarded by a file lock
    - SqlRecordStore: one row per key in a SQL table

Design Pattern: Strategy Pattern
    - The repository and the core services only see this interface
    - Backends are picked by configuration in ``get_record_store()``
"""

from abc import ABC, abstractmethod
from typing import Optional


class StoreError(Exception):
    """Raised when the underlying storage cannot be read or written."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class StoreQuotaExceeded(StoreError):
    """Raised when a write would push the store past its size quota."""

    def __init__(self, key: str, required: int, quota: int):
        self.required = required
        self.quota = quota
        super().__init__(
            f"Writing {key!r} needs {required} bytes, quota is {quota}", key=key
        )


class BaseRecordStore(ABC):
    """Abstract base class for record stores."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend name."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored text for ``key`` or None when absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> int:
        """
        Replace the value stored under ``key``.

        Returns:
            int: The key's new revision

        Raises:
            StoreQuotaExceeded: The write does not fit in the quota
            StoreError: Any other storage failure
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True when something was deleted."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List every stored key."""
        pass

    @abstractmethod
    async def revision(self, key: str) -> int:
        """Current revision of ``key``; 0 when the key was never written."""
        pass

    async def health_check(self) -> bool:
        """Check the backend is reachable."""
        try:
            await self.keys()
        except StoreError:
            return False
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None
