"""
Domain Models

Orders, their status history and the table sessions derived from them.
Records are persisted as JSON documents with camelCase keys, so every model
uses a camelCase alias generator and accepts snake_case names in Python.

Author: Tableside Team
Version: 1.0.0
"""

import enum
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock everywhere."""
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    ORDERED = "ORDERED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    BILL_REQUESTED = "BILL_REQUESTED"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.FINISHED, OrderStatus.CANCELLED})

# Orders in these states no longer block a new order for the same table.
INACTIVE_STATUSES = frozenset({
    OrderStatus.SERVED,
    OrderStatus.FINISHED,
    OrderStatus.CANCELLED,
})


class TableStatus(str, enum.Enum):
    """Occupancy states of a physical table."""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    BILLING = "billing"
    NEEDS_CLEANING = "needs-cleaning"
    RESERVED = "reserved"


class DocumentModel(BaseModel):
    """Base for every persisted record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict:
        """Serialize to the persisted camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ORDERS
# =============================================================================

class OrderItem(DocumentModel):
    """Single line of a placed cart."""
    item_id: str
    name: str
    unit_price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    kind: Optional[str] = None


class StatusHistoryEntry(DocumentModel):
    """One appended transition."""
    status: OrderStatus
    timestamp: datetime
    note: str = ""


class Order(DocumentModel):
    """
    A single placed cart tied to one table.

    Money fields are computed once at placement and never recomputed;
    ``status_history`` is append-only and its last entry always matches
    ``status``.
    """
    id: str
    restaurant_id: str
    table_number: int
    items: List[OrderItem]
    subtotal: float
    tax: float
    total: float
    status: OrderStatus = OrderStatus.ORDERED
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def customer_count(self) -> int:
        """Seated customers approximated by the number of ordered portions."""
        return sum(item.quantity for item in self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def __repr__(self) -> str:
        return f"<Order {self.id} - table {self.table_number} - {self.status.value}>"


# =============================================================================
# TABLE SESSIONS
# =============================================================================

class TableSession(DocumentModel):
    """
    Occupancy record for a physical table, keyed by ``table_number``.

    ``current_order`` references an order id and is only set while the
    table is occupied or billing; ``customers`` is zero whenever the table
    is available or waiting to be cleaned.
    """
    id: int
    name: str
    table_number: int
    restaurant_id: Optional[str] = None
    qr_url: Optional[str] = None
    status: TableStatus = TableStatus.AVAILABLE
    customers: int = Field(default=0, ge=0)
    current_order: Optional[str] = None
    session_start: Optional[datetime] = None
    session_duration: Optional[int] = None
    last_activity: Optional[datetime] = None
    revenue: float = 0.0
    reserved_by: Optional[str] = None
    reserved_time: Optional[datetime] = None
    reservation_notes: Optional[str] = None
    is_manual: bool = False
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        table_number: int,
        restaurant_id: Optional[str] = None,
        qr_url: Optional[str] = None,
        now: Optional[datetime] = None,
        is_manual: bool = False,
    ) -> "TableSession":
        now = now or utcnow()
        return cls(
            id=table_number,
            name=f"Table {table_number}",
            table_number=table_number,
            restaurant_id=restaurant_id,
            qr_url=qr_url,
            is_manual=is_manual,
            created_at=now,
            last_updated=now,
        )

    def reset_occupancy(self, now: datetime) -> None:
        """Return the table to ``available`` with every session field cleared."""
        self.status = TableStatus.AVAILABLE
        self.customers = 0
        self.current_order = None
        self.session_start = None
        self.session_duration = None
        self.revenue = 0.0
        self.clear_reservation()
        self.last_activity = now
        self.last_updated = now

    def clear_reservation(self) -> None:
        self.reserved_by = None
        self.reserved_time = None
        self.reservation_notes = None

    def __repr__(self) -> str:
        return f"<TableSession {self.table_number} - {self.status.value}>"


# =============================================================================
# QR PROVISIONING (read-only to the core)
# =============================================================================

class QRCodeRecord(DocumentModel):
    """Provisioned table as written by the QR code generator."""
    table_number: int
    url: Optional[str] = None
    restaurant_id: Optional[str] = None
    generated_at: Optional[datetime] = None
    image_data_url: Optional[str] = None
