"""
Order Lifecycle Engine

Owns the Order entity and its status state machine; it is the only writer
of the ``orders`` collection. Every change follows the same path:

    validate → append history → persist → publish

Write failures never reach the caller: they are logged by the repository
and the engine carries on with the in-memory result. A failed read of the
orders is different: nothing is written on top of it and the command raises
StoreUnavailableError.

There is no locking; two concurrent transitions on the same order race at
the store and the last whole-collection write wins.
"""

import logging
import random
import string
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from tableside.exceptions import (
    EmptyOrderError,
    IllegalTransitionError,
    StoreUnavailableError,
)
from tableside.models import (
    Order,
    OrderItem,
    OrderStatus,
    StatusHistoryEntry,
    utcnow,
)
from tableside.services.events.dispatcher import EventDispatcher
from tableside.services.events.messages import (
    OrderCompleted,
    OrderCreated,
    OrderUpdated,
)
from tableside.services.orders.analytics import AnalyticsRecorder
from tableside.services.orders.transitions import (
    CREATED_TOKEN,
    can_transition,
    status_token,
)
from tableside.services.store.repository import ORDERS_KEY, RecordRepository

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

DEFAULT_TAX_RATE = 0.05


def generate_order_id(now: datetime) -> str:
    """Time-based id with a random suffix: ``ORD-<epoch ms>-<9 chars>``."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"ORD-{millis}-{suffix}"


def calculate_order_totals(items: Iterable[OrderItem], tax_rate: float = DEFAULT_TAX_RATE) -> dict[str, float]:
    """
    Calculate order subtotal, tax, and total.

    The total is rounded from the subtotal directly and the tax is derived
    from it, so ``total == round(subtotal * (1 + tax_rate), 2)`` holds exactly.
    """
    subtotal = round(sum(item.unit_price * item.quantity for item in items), 2)
    total = round(subtotal * (1 + tax_rate), 2)
    tax = round(total - subtotal, 2)
    return {"subtotal": subtotal, "tax": tax, "total": total}


def _coerce_status(order_id: str, current: OrderStatus, requested: Union[OrderStatus, str]) -> OrderStatus:
    if isinstance(requested, OrderStatus):
        return requested
    try:
        return OrderStatus(str(requested).upper())
    except ValueError:
        raise IllegalTransitionError(order_id, current.value, str(requested))


class OrderLifecycleEngine:
    """
    Places orders and moves them through their lifecycle.

    Attributes:
        repository: Collection access to the record store
        dispatcher: Where lifecycle events are published
        analytics: Optional recorder for finished orders
        tax_rate: Tax applied at placement
    """

    def __init__(
        self,
        repository: RecordRepository,
        dispatcher: EventDispatcher,
        *,
        analytics: Optional[AnalyticsRecorder] = None,
        tax_rate: float = DEFAULT_TAX_RATE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.analytics = analytics
        self.tax_rate = tax_rate
        self.clock = clock

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def _load_for_change(self, action: str) -> list[Order]:
        orders = await self.repository.load_orders()
        if self.repository.is_unreadable(ORDERS_KEY):
            logger.error(f"Cannot {action}: orders could not be read")
            raise StoreUnavailableError(ORDERS_KEY, action)
        return orders

    async def place_order(
        self,
        restaurant_id: str,
        table_number: int,
        items: Iterable[Union[OrderItem, dict]],
    ) -> Order:
        """
        Create an order in ORDERED state and announce it.

        Raises:
            EmptyOrderError: ``items`` is empty
            pydantic.ValidationError: An item is malformed
            StoreUnavailableError: The existing orders could not be read
        """
        parsed = [
            item if isinstance(item, OrderItem) else OrderItem.model_validate(item)
            for item in items
        ]
        if not parsed:
            raise EmptyOrderError(restaurant_id, table_number)

        now = self.clock()
        totals = calculate_order_totals(parsed, self.tax_rate)
        order = Order(
            id=generate_order_id(now),
            restaurant_id=restaurant_id,
            table_number=table_number,
            items=parsed,
            status=OrderStatus.ORDERED,
            status_history=[
                StatusHistoryEntry(status=OrderStatus.ORDERED, timestamp=now, note="Order placed"),
            ],
            created_at=now,
            updated_at=now,
            **totals,
        )

        orders = await self._load_for_change("place an order")
        orders.append(order)
        if not await self.repository.save_orders(orders):
            logger.error(f"Order {order.id} could not be persisted; table will be repaired by the next sweep")

        logger.info(
            f"Order {order.id} placed for table {table_number} "
            f"({len(parsed)} line(s), total {order.total:.2f})"
        )

        await self.dispatcher.publish(OrderCreated(
            table_number=table_number,
            order_status=CREATED_TOKEN,
            customers=order.customer_count,
            order_id=order.id,
            revenue=order.total,
        ))
        return order

    async def transition(
        self,
        order_id: str,
        new_status: Union[OrderStatus, str],
        note: Optional[str] = None,
        *,
        force: bool = False,
        publish: bool = True,
    ) -> Optional[Order]:
        """
        Move an order to ``new_status``.

        Args:
            order_id: The order to change
            new_status: Target status (enum or its name)
            note: History note, defaults to "Status changed to {status}"
            force: Skip the transition table (system overrides); a terminal
                order still cannot be moved
            publish: Announce the change on the dispatcher

        Returns:
            The updated order, or None when ``order_id`` is unknown

        Raises:
            IllegalTransitionError: The move is not allowed
            StoreUnavailableError: The orders could not be read
        """
        orders = await self._load_for_change(f"move {order_id}")
        index = next((i for i, o in enumerate(orders) if o.id == order_id), None)
        if index is None:
            logger.warning(f"Transition to {new_status} requested for unknown order {order_id}")
            return None

        order = orders[index]
        current = order.status
        target = _coerce_status(order_id, current, new_status)

        if force:
            if order.is_terminal:
                raise IllegalTransitionError(order_id, current.value, target.value)
        elif not can_transition(current, target):
            raise IllegalTransitionError(order_id, current.value, target.value)

        now = self.clock()
        if order.status_history:
            now = max(now, order.status_history[-1].timestamp)

        order.status = target
        order.updated_at = now
        order.status_history.append(StatusHistoryEntry(
            status=target,
            timestamp=now,
            note=note if note is not None else f"Status changed to {target.value}",
        ))
        if order.is_terminal:
            order.completed_at = now

        if not await self.repository.save_orders(orders):
            logger.error(f"Transition of {order_id} to {target.value} could not be persisted")

        logger.info(f"Order {order_id}: {current.value} → {target.value}{' (forced)' if force else ''}")

        if target == OrderStatus.FINISHED and current != OrderStatus.FINISHED and self.analytics:
            await self.analytics.record_finished(order, now)

        if publish:
            await self._announce(order)
        return order

    async def _announce(self, order: Order) -> None:
        token = status_token(order.status)
        if token is not None:
            await self.dispatcher.publish(OrderUpdated(
                table_number=order.table_number,
                order_status=token,
                customers=order.customer_count,
                order_id=order.id,
                revenue=order.total,
            ))
        if order.is_terminal:
            await self.dispatcher.publish(OrderCompleted(
                table_number=order.table_number,
                order_id=order.id,
            ))

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_by_restaurant(
        self,
        restaurant_id: str,
        status: Optional[OrderStatus] = None,
    ) -> list[Order]:
        orders = await self.repository.load_orders()
        return [
            o for o in orders
            if o.restaurant_id == restaurant_id and (status is None or o.status == status)
        ]

    async def list_active_by_table(self, restaurant_id: str, table_number: int) -> list[Order]:
        """Orders still blocking a new order at the table (not served, finished or cancelled)."""
        orders = await self.repository.load_orders()
        return [
            o for o in orders
            if o.restaurant_id == restaurant_id
            and o.table_number == table_number
            and o.is_active
        ]

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        orders = await self.repository.load_orders()
        return next((o for o in orders if o.id == order_id), None)
