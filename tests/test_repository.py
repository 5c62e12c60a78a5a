"""
Tests for the record repository: degradation on read failures, malformed
records and the purge-and-retry path on a full store.
"""

import json

from tableside.models import OrderStatus, TableSession
from tableside.services.store import MemoryRecordStore, RecordRepository
from tableside.services.store.repository import (
    MENU_ANALYTICS_KEY,
    ORDER_HISTORY_KEY,
    ORDERS_KEY,
    TABLE_SESSIONS_KEY,
)

RESTAURANT_ID = "restaurant-123"


class TestDegradedReads:
    async def test_corrupted_json_reads_as_empty(self, repository, store):
        await store.set(ORDERS_KEY, "{not json")

        assert await repository.load_orders() == []

    async def test_wrong_shape_reads_as_empty(self, repository, store):
        await store.set(TABLE_SESSIONS_KEY, json.dumps({"tables": []}))

        assert await repository.load_tables() == []

    async def test_read_failure_reads_as_default(self, repository, store):
        store.fail_reads.add(ORDERS_KEY)

        assert await repository.load_orders() == []
        assert await repository.read_json(ORDERS_KEY, default="fallback") == "fallback"

    async def test_malformed_records_are_skipped(self, engine, repository, store, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        documents = json.loads(await store.get(ORDERS_KEY))
        documents.append({"id": "ORD-broken", "tableNumber": "two"})
        await store.set(ORDERS_KEY, json.dumps(documents))

        orders = await repository.load_orders()

        assert [o.id for o in orders] == [order.id]

    async def test_engine_works_on_top_of_corruption(self, engine, store, cart):
        await store.set(ORDERS_KEY, "garbage")

        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        assert (await engine.get_by_id(order.id)).status == OrderStatus.ORDERED

    async def test_write_failure_reports_false(self, repository, store):
        store.fail_writes.add(TABLE_SESSIONS_KEY)

        assert await repository.save_tables([]) is False

    async def test_failed_read_blocks_writes_until_a_good_read(self, repository, store):
        await repository.save_tables([TableSession.new(4, restaurant_id=RESTAURANT_ID)])
        stored = await store.get(TABLE_SESSIONS_KEY)
        store.fail_reads.add(TABLE_SESSIONS_KEY)

        assert await repository.load_tables() == []
        assert repository.is_unreadable(TABLE_SESSIONS_KEY)
        assert await repository.save_tables([]) is False

        store.fail_reads.clear()
        assert await store.get(TABLE_SESSIONS_KEY) == stored
        assert [t.table_number for t in await repository.load_tables()] == [4]
        assert not repository.is_unreadable(TABLE_SESSIONS_KEY)
        assert await repository.save_tables([]) is True

    async def test_absent_key_is_not_a_failed_read(self, repository):
        assert await repository.load_orders() == []
        assert not repository.is_unreadable(ORDERS_KEY)
        assert await repository.save_orders([]) is True


class TestQuota:
    async def test_purges_cached_keys_and_retries_once(self):
        store = MemoryRecordStore(quota_bytes=120)
        repository = RecordRepository(store, purgeable_keys=[ORDER_HISTORY_KEY, MENU_ANALYTICS_KEY])
        await store.set(ORDER_HISTORY_KEY, "x" * 60)
        await store.set(MENU_ANALYTICS_KEY, "y" * 40)

        assert await repository.write_json(ORDERS_KEY, ["z" * 50]) is True

        assert await store.get(ORDER_HISTORY_KEY) is None
        assert await store.get(MENU_ANALYTICS_KEY) is None
        assert json.loads(await store.get(ORDERS_KEY)) == ["z" * 50]
        assert repository.last_warning is None

    async def test_gives_up_after_one_retry(self):
        store = MemoryRecordStore(quota_bytes=20)
        repository = RecordRepository(store, purgeable_keys=[MENU_ANALYTICS_KEY])
        await store.set(TABLE_SESSIONS_KEY, "[]")

        assert await repository.write_json(ORDERS_KEY, ["z" * 50]) is False

        assert await store.get(ORDERS_KEY) is None
        assert await store.get(TABLE_SESSIONS_KEY) == "[]"
        assert "Storage is full" in repository.last_warning

    async def test_never_purges_the_key_being_written(self):
        store = MemoryRecordStore()
        repository = RecordRepository(store, purgeable_keys=[MENU_ANALYTICS_KEY, ORDER_HISTORY_KEY])
        await store.set(MENU_ANALYTICS_KEY, "{}")
        await store.set(ORDER_HISTORY_KEY, "[]")

        purged = await repository.purge_cached_keys(exclude=MENU_ANALYTICS_KEY)

        assert purged == [ORDER_HISTORY_KEY]
        assert await store.get(MENU_ANALYTICS_KEY) == "{}"


class TestChangeDetection:
    async def test_changed_keys_tracks_revisions(self, repository, store):
        assert await repository.changed_keys([ORDERS_KEY]) == {}

        await store.set(ORDERS_KEY, "[]")
        assert await repository.changed_keys([ORDERS_KEY]) == {ORDERS_KEY: 1}
        assert await repository.changed_keys([ORDERS_KEY]) == {}

        await repository.write_json(ORDERS_KEY, [])
        assert await repository.changed_keys([ORDERS_KEY]) == {}
