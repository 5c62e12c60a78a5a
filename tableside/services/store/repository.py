"""
Record Repository

Per-collection read/replace access on top of a record store. This is the
only place that knows the persisted keys, and the place where store failures
are absorbed:

    - read failures and corrupted JSON degrade to the empty default
    - a key whose last read failed is not written again until a read
      succeeds, so a degraded load never replaces the stored collection
    - malformed individual records are skipped with a warning
    - a full store triggers one purge of cached keys and a single retry

Callers never see a StoreError; writes report success as a bool.
"""

import json
import logging
from typing import Any, Iterable, Optional, Type, TypeVar

from pydantic import ValidationError

from tableside.models import DocumentModel, Order, QRCodeRecord, TableSession
from tableside.services.store.base import (
    BaseRecordStore,
    StoreError,
    StoreQuotaExceeded,
)

logger = logging.getLogger(__name__)

ORDERS_KEY = "orders"
TABLE_SESSIONS_KEY = "tableSessions"
MENU_ANALYTICS_KEY = "menuAnalytics"
TOTAL_REVENUE_KEY = "totalRevenue"
ORDER_HISTORY_KEY = "orderHistory"

ModelT = TypeVar("ModelT", bound=DocumentModel)


def qr_codes_key(restaurant_id: str) -> str:
    return f"qrCodes_{restaurant_id}"


class RecordRepository:
    """
    Collection-level access to the record store.

    Attributes:
        store: The underlying record store
        purgeable_keys: Keys that may be deleted to free space
        known_revisions: Last revision this process read or wrote per key
    """

    def __init__(self, store: BaseRecordStore, purgeable_keys: Iterable[str] = ()):
        self.store = store
        self.purgeable_keys = list(purgeable_keys)
        self.known_revisions: dict[str, int] = {}
        self.last_warning: Optional[str] = None
        self._unreadable: set[str] = set()

    # =========================================================================
    # RAW JSON ACCESS
    # =========================================================================

    async def read_json(self, key: str, default: Any = None) -> Any:
        """Read and decode ``key``; any failure yields ``default``."""
        try:
            text = await self.store.get(key)
            self.known_revisions[key] = await self.store.revision(key)
        except StoreError as e:
            logger.error(f"Error loading {key}: {e}")
            self._unreadable.add(key)
            return default

        self._unreadable.discard(key)
        if text is None:
            return default
        try:
            return json.loads(text)
        except ValueError as e:
            logger.error(f"Corrupted JSON under {key}: {e}")
            return default

    async def write_json(self, key: str, value: Any) -> bool:
        """Encode and replace ``key``; returns False when the write was lost."""
        if key in self._unreadable:
            logger.warning(f"Not saving {key}: its last read failed and the loaded copy may be incomplete")
            return False
        text = json.dumps(value)
        try:
            revision = await self._write_with_purge(key, text)
        except StoreError as e:
            logger.error(f"Error saving {key}: {e}")
            return False
        self.known_revisions[key] = revision
        return True

    async def _write_with_purge(self, key: str, text: str) -> int:
        try:
            return await self.store.set(key, text)
        except StoreQuotaExceeded:
            purged = await self.purge_cached_keys(exclude=key)
            logger.warning(
                f"Store quota exceeded writing {key}; purged {purged or 'nothing'}, retrying once"
            )

        try:
            return await self.store.set(key, text)
        except StoreQuotaExceeded as e:
            self.last_warning = (
                "Storage is full. Recent changes could not be saved; "
                "clear cached data to continue."
            )
            logger.warning(f"⚠️ {self.last_warning} ({e})")
            raise

    async def purge_cached_keys(self, exclude: Optional[str] = None) -> list[str]:
        """Delete the non-essential keys; returns the ones actually removed."""
        purged = []
        for key in self.purgeable_keys:
            if key == exclude:
                continue
            try:
                if await self.store.delete(key):
                    purged.append(key)
            except StoreError as e:
                logger.error(f"Error purging {key}: {e}")
        return purged

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def is_unreadable(self, key: str) -> bool:
        """True while the last read of ``key`` failed at the store."""
        return key in self._unreadable

    async def _load_collection(self, key: str, model: Type[ModelT]) -> list[ModelT]:
        raw = await self.read_json(key, default=[])
        if not isinstance(raw, list):
            logger.error(f"Expected a list under {key}, got {type(raw).__name__}")
            return []

        records = []
        for index, item in enumerate(raw):
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {model.__name__} #{index} in {key}: {e.error_count()} error(s)")
        return records

    async def _save_collection(self, key: str, records: Iterable[DocumentModel]) -> bool:
        return await self.write_json(key, [record.to_document() for record in records])

    async def load_orders(self) -> list[Order]:
        return await self._load_collection(ORDERS_KEY, Order)

    async def save_orders(self, orders: Iterable[Order]) -> bool:
        return await self._save_collection(ORDERS_KEY, orders)

    async def load_tables(self) -> list[TableSession]:
        return await self._load_collection(TABLE_SESSIONS_KEY, TableSession)

    async def save_tables(self, tables: Iterable[TableSession]) -> bool:
        return await self._save_collection(TABLE_SESSIONS_KEY, tables)

    async def load_qr_codes(self, restaurant_id: str) -> list[QRCodeRecord]:
        """
        Provisioned tables for a restaurant.

        The generator has written both ``{"qrCodes": [...]}`` and a bare
        list over time; both are accepted.
        """
        raw = await self.read_json(qr_codes_key(restaurant_id), default=[])
        if isinstance(raw, dict):
            raw = raw.get("qrCodes") or []
        if not isinstance(raw, list):
            return []

        codes = []
        for item in raw:
            try:
                codes.append(QRCodeRecord.model_validate(item))
            except ValidationError:
                logger.warning(f"Skipping malformed QR code entry for {restaurant_id}")
        return codes

    # =========================================================================
    # CHANGE DETECTION
    # =========================================================================

    async def changed_keys(self, keys: Iterable[str]) -> dict[str, int]:
        """
        Keys whose store revision differs from the last one seen here.

        The returned revisions are recorded as seen.
        """
        changed = {}
        for key in keys:
            try:
                current = await self.store.revision(key)
            except StoreError as e:
                logger.error(f"Error checking revision of {key}: {e}")
                continue
            if current != self.known_revisions.get(key, 0):
                changed[key] = current
                self.known_revisions[key] = current
        return changed
