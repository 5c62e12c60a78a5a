"""
Event Messages

Typed messages carried by the event dispatcher. ``to_payload()`` renders the
camelCase payload other consumers (dashboards, websockets) expect.
"""

from dataclasses import dataclass
from typing import ClassVar, Optional


@dataclass(frozen=True)
class Event:
    """Base class for every message on the dispatcher."""
    topic: ClassVar[str] = "event"

    def to_payload(self) -> dict:
        return {}


@dataclass(frozen=True)
class OrderStatusEvent(Event):
    """
    An order entered a new status.

    Attributes:
        table_number: Table the order belongs to
        order_status: Lowercase table token (created, preparing, ready,
            served, billing, paid, finished)
        customers: Seated customer count, None when unknown
        order_id: The order, None when the sender does not know it
        revenue: Order total, None when unknown
    """
    table_number: int
    order_status: str
    customers: Optional[int] = None
    order_id: Optional[str] = None
    revenue: Optional[float] = None

    def to_payload(self) -> dict:
        return {
            "tableNumber": self.table_number,
            "orderStatus": self.order_status,
            "customers": self.customers,
            "orderId": self.order_id,
            "revenue": self.revenue,
        }


@dataclass(frozen=True)
class OrderCreated(OrderStatusEvent):
    topic: ClassVar[str] = "order.created"


@dataclass(frozen=True)
class OrderUpdated(OrderStatusEvent):
    topic: ClassVar[str] = "order.updated"


@dataclass(frozen=True)
class OrderCompleted(Event):
    """An order reached a terminal state."""
    topic: ClassVar[str] = "order.completed"

    table_number: int
    order_id: str

    def to_payload(self) -> dict:
        return {"tableNumber": self.table_number, "orderId": self.order_id}


@dataclass(frozen=True)
class StorageChanged(Event):
    """A stored key was written by another execution context."""
    topic: ClassVar[str] = "storage.changed"

    key: str
    revision: int

    def to_payload(self) -> dict:
        return {"key": self.key, "revision": self.revision}
