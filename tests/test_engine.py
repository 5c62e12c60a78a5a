"""
Tests for the order lifecycle engine: placement, the transition table,
history bookkeeping and the events each change publishes.
"""

import pytest

from tableside.exceptions import (
    EmptyOrderError,
    IllegalTransitionError,
    StoreUnavailableError,
)
from tableside.models import OrderItem, OrderStatus
from tableside.services.events import Event, OrderCompleted, OrderCreated, OrderUpdated
from tableside.services.orders import calculate_order_totals
from tableside.services.orders.transitions import ALLOWED_TRANSITIONS, allowed_next
from tableside.services.store.repository import (
    MENU_ANALYTICS_KEY,
    ORDER_HISTORY_KEY,
    ORDERS_KEY,
    TOTAL_REVENUE_KEY,
)

RESTAURANT_ID = "restaurant-123"

HAPPY_PATH = [
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
    OrderStatus.BILL_REQUESTED,
    OrderStatus.FINISHED,
]


@pytest.fixture
def published(dispatcher):
    events = []
    dispatcher.subscribe(Event, events.append)
    return events


class TestPlaceOrder:
    async def test_totals_and_initial_state(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        assert order.id.startswith("ORD-")
        assert order.status == OrderStatus.ORDERED
        assert (order.subtotal, order.tax, order.total) == (300.0, 15.0, 315.0)
        assert order.customer_count == 3
        assert len(order.status_history) == 1
        assert order.status_history[0].status == OrderStatus.ORDERED
        assert order.status_history[0].note == "Order placed"

    async def test_order_is_persisted(self, engine, repository, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        stored = await repository.load_orders()
        assert [o.id for o in stored] == [order.id]
        assert stored[0].items == order.items

    async def test_accepts_item_documents(self, engine):
        order = await engine.place_order(RESTAURANT_ID, 1, [
            {"itemId": "chai", "name": "Masala Chai", "unitPrice": 30, "quantity": 2},
        ])
        assert order.subtotal == 60.0
        assert order.items[0].item_id == "chai"

    async def test_empty_cart_is_rejected(self, engine, repository):
        with pytest.raises(EmptyOrderError):
            await engine.place_order(RESTAURANT_ID, 1, [])
        assert await repository.load_orders() == []

    async def test_publishes_created_event(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        assert len(published) == 1
        event = published[0]
        assert isinstance(event, OrderCreated)
        assert event.to_payload() == {
            "tableNumber": 2,
            "orderStatus": "created",
            "customers": 3,
            "orderId": order.id,
            "revenue": 315.0,
        }

    async def test_store_failure_does_not_reach_caller(self, engine, store, repository, cart):
        store.fail_writes.add("orders")

        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        assert order.status == OrderStatus.ORDERED
        assert await repository.load_orders() == []

    async def test_unreadable_orders_are_never_overwritten(self, engine, repository, store, cart, published):
        first = await engine.place_order(RESTAURANT_ID, 1, cart)
        second = await engine.place_order(RESTAURANT_ID, 2, cart)
        published.clear()
        store.fail_reads.add(ORDERS_KEY)

        with pytest.raises(StoreUnavailableError):
            await engine.place_order(RESTAURANT_ID, 3, cart)
        with pytest.raises(StoreUnavailableError):
            await engine.transition(first.id, OrderStatus.PREPARING)

        store.fail_reads.clear()
        orders = await repository.load_orders()
        assert [o.id for o in orders] == [first.id, second.id]
        assert orders[0].status == OrderStatus.ORDERED
        assert published == []


class TestTotals:
    @pytest.mark.parametrize("prices", [
        [(0.1, 3)],
        [(19.99, 1), (4.49, 3)],
        [(12.345, 2), (0.015, 7)],
        [(999.99, 99)],
    ])
    def test_total_is_subtotal_plus_five_percent(self, prices):
        items = [
            OrderItem(item_id=f"i{n}", name=f"Item {n}", unit_price=price, quantity=qty)
            for n, (price, qty) in enumerate(prices)
        ]
        totals = calculate_order_totals(items, 0.05)

        assert totals["total"] == round(totals["subtotal"] * 1.05, 2)
        assert totals["tax"] == round(totals["total"] - totals["subtotal"], 2)

    async def test_totals_never_recomputed(self, engine, repository, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        for status in HAPPY_PATH:
            await engine.transition(order.id, status)

        stored = await engine.get_by_id(order.id)
        assert (stored.subtotal, stored.tax, stored.total) == (300.0, 15.0, 315.0)


class TestTransition:
    async def test_history_follows_every_step(self, engine, cart, clock):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        for status in HAPPY_PATH:
            clock.advance(minutes=5)
            order = await engine.transition(order.id, status)

        assert [e.status for e in order.status_history] == [OrderStatus.ORDERED, *HAPPY_PATH]
        assert order.status_history[-1].status == order.status
        stamps = [e.timestamp for e in order.status_history]
        assert stamps == sorted(stamps)
        assert order.completed_at == clock.now
        assert order.updated_at == clock.now

    async def test_history_stays_monotonic_when_clock_goes_back(self, engine, cart, clock):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        clock.advance(minutes=-10)

        order = await engine.transition(order.id, OrderStatus.PREPARING)

        first, second = order.status_history
        assert second.timestamp >= first.timestamp

    async def test_default_and_custom_notes(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        order = await engine.transition(order.id, OrderStatus.PREPARING)
        order = await engine.transition(order.id, OrderStatus.READY, note="Pass 2")

        assert order.status_history[1].note == "Status changed to PREPARING"
        assert order.status_history[2].note == "Pass 2"

    async def test_explicit_empty_note_is_kept(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        order = await engine.transition(order.id, OrderStatus.PREPARING, note="")

        assert order.status_history[-1].note == ""

    async def test_status_name_is_accepted(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        order = await engine.transition(order.id, "preparing")
        assert order.status == OrderStatus.PREPARING

    async def test_unknown_order_returns_none(self, engine):
        assert await engine.transition("ORD-missing", OrderStatus.PREPARING) is None

    @pytest.mark.parametrize("target", [
        OrderStatus.READY,
        OrderStatus.SERVED,
        OrderStatus.BILL_REQUESTED,
        OrderStatus.FINISHED,
        OrderStatus.ORDERED,
    ])
    async def test_illegal_moves_from_ordered(self, engine, repository, cart, target):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        with pytest.raises(IllegalTransitionError) as exc_info:
            await engine.transition(order.id, target)

        assert exc_info.value.current == "ORDERED"
        stored = await engine.get_by_id(order.id)
        assert stored.status == OrderStatus.ORDERED
        assert len(stored.status_history) == 1

    async def test_unknown_status_name_is_illegal(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        with pytest.raises(IllegalTransitionError):
            await engine.transition(order.id, "paid")

    async def test_cancel_only_before_ready(self, engine, cart):
        early = await engine.place_order(RESTAURANT_ID, 1, cart)
        late = await engine.place_order(RESTAURANT_ID, 2, cart)
        for status in (OrderStatus.PREPARING, OrderStatus.READY):
            await engine.transition(late.id, status)

        cancelled = await engine.transition(early.id, OrderStatus.CANCELLED)
        assert cancelled.status == OrderStatus.CANCELLED
        with pytest.raises(IllegalTransitionError):
            await engine.transition(late.id, OrderStatus.CANCELLED)

    async def test_force_skips_table_but_not_terminal_states(self, engine, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)

        order = await engine.transition(order.id, OrderStatus.FINISHED, force=True)
        assert order.status == OrderStatus.FINISHED

        with pytest.raises(IllegalTransitionError):
            await engine.transition(order.id, OrderStatus.PREPARING, force=True)

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[OrderStatus.FINISHED] == frozenset()
        assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()
        assert allowed_next(OrderStatus.SERVED) == [OrderStatus.BILL_REQUESTED, OrderStatus.FINISHED]


class TestTransitionEvents:
    async def test_update_events_use_order_figures(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        published.clear()

        await engine.transition(order.id, OrderStatus.PREPARING)

        assert len(published) == 1
        event = published[0]
        assert isinstance(event, OrderUpdated)
        assert event.order_status == "preparing"
        assert event.customers == 3
        assert event.revenue == 315.0

    async def test_bill_request_is_announced_as_billing(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        for status in HAPPY_PATH[:4]:
            await engine.transition(order.id, status)

        assert published[-1].order_status == "billing"

    async def test_finish_announces_update_then_completion(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        for status in HAPPY_PATH[:4]:
            await engine.transition(order.id, status)
        published.clear()

        await engine.transition(order.id, OrderStatus.FINISHED)

        assert [type(e) for e in published] == [OrderUpdated, OrderCompleted]
        assert published[0].order_status == "finished"
        assert published[1].to_payload() == {"tableNumber": 2, "orderId": order.id}

    async def test_cancel_only_announces_completion(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        published.clear()

        await engine.transition(order.id, OrderStatus.CANCELLED)

        assert [type(e) for e in published] == [OrderCompleted]

    async def test_publish_can_be_suppressed(self, engine, cart, published):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        published.clear()

        await engine.transition(order.id, OrderStatus.PREPARING, publish=False)

        assert published == []


class TestQueries:
    async def test_list_by_restaurant_and_status(self, engine, cart):
        first = await engine.place_order(RESTAURANT_ID, 1, cart)
        await engine.place_order(RESTAURANT_ID, 2, cart)
        await engine.place_order("other-restaurant", 1, cart)
        await engine.transition(first.id, OrderStatus.PREPARING)

        assert len(await engine.list_by_restaurant(RESTAURANT_ID)) == 2
        preparing = await engine.list_by_restaurant(RESTAURANT_ID, OrderStatus.PREPARING)
        assert [o.id for o in preparing] == [first.id]

    async def test_active_orders_exclude_served_and_closed(self, engine, cart):
        open_order = await engine.place_order(RESTAURANT_ID, 3, cart)
        served = await engine.place_order(RESTAURANT_ID, 3, cart)
        finished = await engine.place_order(RESTAURANT_ID, 3, cart)
        cancelled = await engine.place_order(RESTAURANT_ID, 3, cart)
        await engine.place_order(RESTAURANT_ID, 4, cart)

        for status in HAPPY_PATH[:3]:
            await engine.transition(served.id, status)
        await engine.transition(finished.id, OrderStatus.FINISHED, force=True)
        await engine.transition(cancelled.id, OrderStatus.CANCELLED)

        active = await engine.list_active_by_table(RESTAURANT_ID, 3)
        assert [o.id for o in active] == [open_order.id]

    async def test_get_by_id_missing(self, engine):
        assert await engine.get_by_id("nope") is None


class TestAnalytics:
    async def test_finishing_updates_counters(self, engine, repository, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        await engine.transition(order.id, OrderStatus.FINISHED, force=True)

        assert await repository.read_json(TOTAL_REVENUE_KEY) == 315.0
        history = await repository.read_json(ORDER_HISTORY_KEY)
        assert [h["id"] for h in history] == [order.id]
        analytics = await repository.read_json(MENU_ANALYTICS_KEY)
        assert analytics["totalOrders"] == 1
        assert analytics["itemOrders"] == {"paneer-tikka": 1, "dal-makhani": 1}

    async def test_cancelling_records_nothing(self, engine, repository, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        await engine.transition(order.id, OrderStatus.CANCELLED)

        assert await repository.read_json(TOTAL_REVENUE_KEY) is None

    async def test_analytics_failure_does_not_block_finish(self, engine, store, cart):
        order = await engine.place_order(RESTAURANT_ID, 2, cart)
        store.fail_writes.update({TOTAL_REVENUE_KEY, ORDER_HISTORY_KEY, MENU_ANALYTICS_KEY})

        finished = await engine.transition(order.id, OrderStatus.FINISHED, force=True)

        assert finished.status == OrderStatus.FINISHED
        assert (await engine.get_by_id(order.id)).status == OrderStatus.FINISHED

    async def test_unreadable_history_is_not_overwritten(self, engine, repository, store, cart):
        first = await engine.place_order(RESTAURANT_ID, 2, cart)
        await engine.transition(first.id, OrderStatus.FINISHED, force=True)
        second = await engine.place_order(RESTAURANT_ID, 3, cart)
        store.fail_reads.add(ORDER_HISTORY_KEY)

        finished = await engine.transition(second.id, OrderStatus.FINISHED, force=True)

        store.fail_reads.clear()
        assert finished.status == OrderStatus.FINISHED
        history = await repository.read_json(ORDER_HISTORY_KEY)
        assert [h["id"] for h in history] == [first.id]
