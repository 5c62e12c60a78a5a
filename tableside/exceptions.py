"""
Domain errors raised by the order engine and the table reconciler.

Not-found conditions are never raised; operations return ``None`` instead.
"""

from typing import Optional


class TablesideError(Exception):
    """Base class for errors surfaced to callers."""


class EmptyOrderError(TablesideError, ValueError):
    """An order was placed without any items."""

    def __init__(self, restaurant_id: str, table_number: int):
        self.restaurant_id = restaurant_id
        self.table_number = table_number
        super().__init__(
            f"Cannot place an empty order for table {table_number} ({restaurant_id})"
        )


class IllegalTransitionError(TablesideError):
    """The requested status change is not in the transition table."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}"
        )


class TableStateError(TablesideError):
    """A table operation was attempted from a state that does not allow it."""

    def __init__(self, table_number: int, current: str, action: str, required: Optional[str] = None):
        self.table_number = table_number
        self.current = current
        self.action = action
        self.required = required
        message = f"Table {table_number} is {current}; cannot {action}"
        if required:
            message += f" (requires {required})"
        super().__init__(message)


class StoreUnavailableError(TablesideError):
    """A collection could not be read, so it cannot be safely changed."""

    def __init__(self, key: str, action: str):
        self.key = key
        self.action = action
        super().__init__(f"Cannot {action}: {key} could not be read from the store")
