"""
Pydantic Schemas for Request/Response Validation

Requests use snake_case; responses return the domain models, which
serialize with the same camelCase keys as the record store.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from tableside.models import Order, OrderItem, OrderStatus, TableSession


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single item in a cart."""
    item_id: str = Field(..., min_length=1, examples=["paneer-tikka"])
    name: str = Field(..., min_length=1, max_length=100, examples=["Paneer Tikka"])
    unit_price: float = Field(..., ge=0, examples=[150.0])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    kind: Optional[str] = Field(None, max_length=20, examples=["VEG"])

    def to_model(self) -> OrderItem:
        return OrderItem(**self.model_dump())


class PlaceOrderRequest(BaseModel):
    """Request schema for placing an order from a table."""
    table_number: int = Field(..., ge=1, examples=[2])
    items: List[OrderItemCreate] = Field(..., min_length=1)


class TransitionRequest(BaseModel):
    """Move an order to a new status."""
    status: OrderStatus = Field(..., examples=["PREPARING"])
    note: Optional[str] = Field(None, max_length=200)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class ReserveTableRequest(BaseModel):
    """Reserve an available table."""
    customer_name: str = Field(..., min_length=1, max_length=100, examples=["Priya"])
    time: datetime = Field(..., examples=["2026-10-19T19:30:00+00:00"])
    notes: Optional[str] = Field(None, max_length=500)


class MaterializeTablesRequest(BaseModel):
    """Provisioned table numbers; omit to read them from the QR codes."""
    table_numbers: Optional[List[int]] = Field(None, examples=[[1, 2, 3]])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[Order]


class TableListResponse(BaseModel):
    total: int
    tables: List[TableSession]


class TableSummaryResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    seated_customers: int
    open_revenue: float


class SweepResponse(BaseModel):
    full: bool
    tables_reset: List[int]
    orders_closed: List[str]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    dispatcher: str
    sweeps: str
    broker: str
    timestamp: datetime
