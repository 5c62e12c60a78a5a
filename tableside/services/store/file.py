"""
JSON File Record Store with Concurrency Control

One file per key under the data directory. Each file holds an envelope with
the key's revision and its JSON text value; reads and writes of a key are
serialized across processes with a file lock, so a Celery worker and the web
process can share the same directory.

Author: Tableside Team
Version: 1.0.0
"""

import asyncio
import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from tableside.services.store.base import (
    BaseRecordStore,
    StoreError,
    StoreQuotaExceeded,
)

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


class JsonFileRecordStore(BaseRecordStore):
    """File-backed record store."""

    SUFFIX = ".json"

    def __init__(
        self,
        directory: str,
        lock_timeout: int = 10,
        quota_bytes: Optional[int] = None,
    ):
        self.directory = Path(directory)
        self.lock_timeout = lock_timeout
        self.quota_bytes = quota_bytes
        logger.info(
            f"JsonFileRecordStore initialized (directory={self.directory}, "
            f"quota={quota_bytes or 'unlimited'})"
        )

    @property
    def backend_name(self) -> str:
        return "file"

    # =========================================================================
    # PATHS & ENVELOPES
    # =========================================================================

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.directory}")

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', key)}{self.SUFFIX}"

    def _lock(self, key: str) -> FileLock:
        return FileLock(f"{self._path(key)}.lock", timeout=self.lock_timeout)

    def _read_envelope(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                envelope = json.load(fh)
        except (OSError, ValueError) as e:
            raise StoreError(f"Error reading {path}: {e}") from e
        if not isinstance(envelope, dict) or "value" not in envelope:
            raise StoreError(f"Malformed store file {path}")
        return envelope

    def _used_bytes_without(self, path: Path) -> int:
        total = 0
        for other in self.directory.glob(f"*{self.SUFFIX}"):
            if other == path:
                continue
            try:
                envelope = self._read_envelope(other)
            except StoreError:
                continue
            if envelope is not None:
                total += len(str(envelope["value"]).encode("utf-8"))
        return total

    # =========================================================================
    # BLOCKING OPERATIONS (run on a worker thread)
    # =========================================================================

    def _get_sync(self, key: str) -> Optional[str]:
        self._ensure_data_dir()
        path = self._path(key)
        with self._lock(key):
            envelope = self._read_envelope(path)
        return None if envelope is None else envelope["value"]

    def _set_sync(self, key: str, value: str) -> int:
        self._ensure_data_dir()
        path = self._path(key)

        if self.quota_bytes is not None:
            required = self._used_bytes_without(path) + len(value.encode("utf-8"))
            if required > self.quota_bytes:
                raise StoreQuotaExceeded(key, required, self.quota_bytes)

        with self._lock(key):
            logger.debug(f"Lock acquired for {key}")
            try:
                current = self._read_envelope(path)
            except StoreError:
                logger.warning(f"Overwriting unreadable store file for {key}")
                current = None
            revision = (current or {}).get("revision", 0) + 1
            envelope = {
                "key": key,
                "revision": revision,
                "savedAt": datetime.now().isoformat(),
                "value": value,
            }
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            try:
                with tmp_path.open("w", encoding="utf-8") as fh:
                    json.dump(envelope, fh)
                os.replace(tmp_path, path)
            except OSError as e:
                raise StoreError(f"Error writing {path}: {e}", key=key) from e
        logger.debug(f"Lock released for {key}")
        return revision

    def _delete_sync(self, key: str) -> bool:
        path = self._path(key)
        with self._lock(key):
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as e:
                raise StoreError(f"Error deleting {path}: {e}", key=key) from e
        return True

    def _keys_sync(self) -> list[str]:
        self._ensure_data_dir()
        keys = []
        for path in sorted(self.directory.glob(f"*{self.SUFFIX}")):
            try:
                envelope = self._read_envelope(path)
            except StoreError as e:
                logger.warning(str(e))
                continue
            if envelope is not None:
                keys.append(envelope.get("key", path.stem))
        return keys

    def _revision_sync(self, key: str) -> int:
        envelope = self._read_envelope(self._path(key))
        return 0 if envelope is None else int(envelope.get("revision", 0))

    # =========================================================================
    # ASYNC INTERFACE
    # =========================================================================

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except Timeout as e:
            raise StoreError(f"Lock timeout ({self.lock_timeout}s)") from e
        except OSError as e:
            raise StoreError(str(e)) from e

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._get_sync, key)

    async def set(self, key: str, value: str) -> int:
        return await self._run(self._set_sync, key, value)

    async def delete(self, key: str) -> bool:
        return await self._run(self._delete_sync, key)

    async def keys(self) -> list[str]:
        return await self._run(self._keys_sync)

    async def revision(self, key: str) -> int:
        return await self._run(self._revision_sync, key)
