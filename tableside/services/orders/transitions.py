"""
Order Status Transition Table

Legal ``from → {to}`` moves of the order state machine, and the lowercase
token each status is announced with on the event dispatcher.

    ORDERED → PREPARING → READY → SERVED → BILL_REQUESTED → FINISHED
    ORDERED | PREPARING → CANCELLED
    SERVED → FINISHED (table settled without a bill request)
"""

from typing import Optional

from tableside.models import OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.ORDERED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED}),
    OrderStatus.SERVED: frozenset({OrderStatus.BILL_REQUESTED, OrderStatus.FINISHED}),
    OrderStatus.BILL_REQUESTED: frozenset({OrderStatus.FINISHED}),
    OrderStatus.FINISHED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CREATED_TOKEN = "created"

# CANCELLED has no table token: a cancelled order only emits OrderCompleted.
STATUS_TOKENS: dict[OrderStatus, str] = {
    OrderStatus.ORDERED: CREATED_TOKEN,
    OrderStatus.PREPARING: "preparing",
    OrderStatus.READY: "ready",
    OrderStatus.SERVED: "served",
    OrderStatus.BILL_REQUESTED: "billing",
    OrderStatus.FINISHED: "finished",
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_next(current: OrderStatus) -> list[OrderStatus]:
    """Next statuses in workflow order, for UIs offering the available actions."""
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    return [status for status in OrderStatus if status in allowed]


def status_token(status: OrderStatus) -> Optional[str]:
    return STATUS_TOKENS.get(status)
