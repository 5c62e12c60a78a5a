"""
Order lifecycle: engine, transition table and analytics side effects.
"""

from tableside.services.orders.analytics import AnalyticsRecorder
from tableside.services.orders.engine import (
    OrderLifecycleEngine,
    calculate_order_totals,
    generate_order_id,
)
from tableside.services.orders.transitions import (
    ALLOWED_TRANSITIONS,
    allowed_next,
    can_transition,
    status_token,
)

__all__ = [
    "AnalyticsRecorder",
    "OrderLifecycleEngine",
    "calculate_order_totals",
    "generate_order_id",
    "ALLOWED_TRANSITIONS",
    "allowed_next",
    "can_transition",
    "status_token",
]
