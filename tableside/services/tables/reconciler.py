"""
Table Session Reconciler

Owns the ``tableSessions`` collection and keeps each table's occupancy
consistent with its current order through three overlapping mechanisms:

    1. Event-driven update   - order status events mapped to table states
    2. Completed-order sweep - occupied tables whose order is gone or closed
    3. Stale-order sweep     - open orders older than the age threshold are
                               force-finished and their table released

Events are only hints: customer counts and revenue are read back from the
Order entity whenever the event names one. The sweeps are incremental; only
tables flagged dirty are re-checked, with a periodic full pass as backstop.

Every read-modify-write of the table collection runs under one lock, so a
sweep cannot save a copy loaded before a concurrent event was applied.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from tableside.exceptions import (
    IllegalTransitionError,
    StoreUnavailableError,
    TableStateError,
)
from tableside.models import Order, OrderStatus, TableSession, TableStatus, utcnow
from tableside.services.events.dispatcher import EventDispatcher
from tableside.services.events.messages import (
    OrderCompleted,
    OrderStatusEvent,
    StorageChanged,
)
from tableside.services.orders.engine import OrderLifecycleEngine
from tableside.services.store.repository import (
    ORDERS_KEY,
    TABLE_SESSIONS_KEY,
    RecordRepository,
)

logger = logging.getLogger(__name__)

# Order event token → table status. Tokens not listed leave the status as is.
TOKEN_TABLE_STATUS: dict[str, TableStatus] = {
    "created": TableStatus.OCCUPIED,
    "preparing": TableStatus.OCCUPIED,
    "ready": TableStatus.OCCUPIED,
    "served": TableStatus.OCCUPIED,
    "billing": TableStatus.BILLING,
    "paid": TableStatus.NEEDS_CLEANING,
    "finished": TableStatus.AVAILABLE,
}

SEATED_STATUSES = frozenset({TableStatus.OCCUPIED, TableStatus.BILLING})


@dataclass
class SweepReport:
    """Outcome of one ``run_sweeps`` call."""
    full: bool = False
    tables_reset: list[int] = field(default_factory=list)
    orders_closed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.tables_reset or self.orders_closed)


def _session_minutes(table: TableSession, now: datetime) -> Optional[int]:
    if table.session_start is None:
        return None
    return max(0, int((now - table.session_start).total_seconds() // 60))


class TableSessionReconciler:
    """
    Derives table occupancy from order activity.

    Attributes:
        repository: Collection access to the record store
        engine: Order engine, used for order lookups and forced closes
        dispatcher: Source of order events
        stale_after: Age after which an open order is auto-finished
        full_sweep_every: Every Nth ``run_sweeps`` re-checks every table
    """

    def __init__(
        self,
        repository: RecordRepository,
        engine: OrderLifecycleEngine,
        dispatcher: EventDispatcher,
        *,
        stale_after: timedelta = timedelta(minutes=60),
        full_sweep_every: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.engine = engine
        self.dispatcher = dispatcher
        self.stale_after = stale_after
        self.full_sweep_every = full_sweep_every
        self.clock = clock
        self.sweeps = 0
        self._dirty: set[int] = set()
        self._force_full = True
        self._unsubscribers: list[Callable[[], None]] = []
        self._lock = asyncio.Lock()

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def attach(self) -> None:
        """Subscribe to order and storage events."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.dispatcher.subscribe(OrderStatusEvent, self.apply_event),
            self.dispatcher.subscribe(OrderCompleted, self.apply_completed),
            self.dispatcher.subscribe(StorageChanged, self.on_storage_changed),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    @property
    def dirty_tables(self) -> frozenset[int]:
        return frozenset(self._dirty)

    # =========================================================================
    # EVENT-DRIVEN UPDATES
    # =========================================================================

    async def _occupancy_figures(self, event: OrderStatusEvent, table: TableSession) -> tuple[int, float]:
        """
        Customers and revenue for the table.

        Read from the order when it can be found; otherwise the event values
        are used, and a missing or zero value keeps what the table had.
        """
        if event.order_id:
            order = await self.engine.get_by_id(event.order_id)
            if order is not None:
                return order.customer_count, order.total

        customers = event.customers if event.customers else table.customers
        revenue = event.revenue if event.revenue else table.revenue
        return customers, revenue

    async def apply_event(self, event: OrderStatusEvent) -> Optional[TableSession]:
        """Apply one order status event to its table."""
        async with self._lock:
            return await self._apply_event(event)

    async def _apply_event(self, event: OrderStatusEvent) -> Optional[TableSession]:
        tables = await self.repository.load_tables()
        if self.repository.is_unreadable(TABLE_SESSIONS_KEY):
            logger.warning(f"Tables unreadable; {event.topic} for table {event.table_number} not applied")
            return None
        table = next((t for t in tables if t.table_number == event.table_number), None)
        if table is None:
            logger.debug(f"No table {event.table_number} for {event.topic}; ignoring")
            return None

        now = self.clock()
        new_status = TOKEN_TABLE_STATUS.get(event.order_status)

        if new_status == TableStatus.AVAILABLE:
            table.reset_occupancy(now)
        elif new_status == TableStatus.NEEDS_CLEANING:
            table.session_duration = _session_minutes(table, now)
            table.status = TableStatus.NEEDS_CLEANING
            table.customers = 0
            table.current_order = None
            table.clear_reservation()
        elif new_status in SEATED_STATUSES:
            customers, revenue = await self._occupancy_figures(event, table)
            if table.status not in SEATED_STATUSES or table.session_start is None:
                table.session_start = now
            table.clear_reservation()
            table.status = new_status
            table.customers = customers
            table.revenue = revenue
            table.current_order = event.order_id or table.current_order
            table.session_duration = _session_minutes(table, now)
        elif table.status in SEATED_STATUSES:
            customers, revenue = await self._occupancy_figures(event, table)
            table.customers = customers
            table.revenue = revenue
            table.session_duration = _session_minutes(table, now)

        table.last_activity = now
        table.last_updated = now

        if table.status in SEATED_STATUSES:
            self._dirty.add(table.table_number)
        else:
            self._dirty.discard(table.table_number)

        await self.repository.save_tables(tables)
        logger.info(f"Table {table.table_number} → {table.status.value} ({event.topic}: {event.order_status})")
        return table

    async def apply_completed(self, event: OrderCompleted) -> Optional[TableSession]:
        """Release the table when the completed order is the one it is serving."""
        async with self._lock:
            tables = await self.repository.load_tables()
            table = next((t for t in tables if t.table_number == event.table_number), None)
            if table is None:
                return None

            serving_it = table.current_order == event.order_id
            orphaned = table.current_order is None and table.status in SEATED_STATUSES
            if not (serving_it or orphaned):
                return table

            table.reset_occupancy(self.clock())
            self._dirty.discard(table.table_number)
            await self.repository.save_tables(tables)
        logger.info(f"Table {table.table_number} released (order {event.order_id} completed)")
        return table

    async def on_storage_changed(self, event: StorageChanged) -> None:
        """Another process wrote orders or tables: re-check everything next sweep."""
        if event.key in (ORDERS_KEY, TABLE_SESSIONS_KEY):
            self._force_full = True

    # =========================================================================
    # SWEEPS
    # =========================================================================

    async def sweep_completed_orders(self, full: bool = False) -> list[int]:
        """
        Release seated tables whose order is missing, finished or cancelled.

        Only dirty tables are checked unless ``full`` is set (or a full pass
        is pending). Nothing is written when nothing changed.

        Returns:
            Numbers of the tables that were reset
        """
        async with self._lock:
            return await self._sweep_completed_orders(full or self._force_full)

    async def _sweep_completed_orders(self, full: bool) -> list[int]:
        tables = await self.repository.load_tables()
        if self.repository.is_unreadable(TABLE_SESSIONS_KEY):
            logger.warning("Tables unreadable; completed-order sweep skipped")
            return []
        if not tables:
            self._force_full = False
            return []
        if not full and not self._dirty:
            return []

        orders = {o.id: o for o in await self.repository.load_orders()}
        if self.repository.is_unreadable(ORDERS_KEY):
            # Every order would look missing.
            logger.warning("Orders unreadable; completed-order sweep skipped")
            return []

        now = self.clock()
        reset = []
        for table in tables:
            if not full and table.table_number not in self._dirty:
                continue
            if table.status not in SEATED_STATUSES or not table.current_order:
                self._dirty.discard(table.table_number)
                continue

            order = orders.get(table.current_order)
            if order is None or order.is_terminal:
                logger.info(
                    f"Table {table.table_number} order {table.current_order} is "
                    f"{'missing' if order is None else order.status.value}; marking table available"
                )
                table.reset_occupancy(now)
                self._dirty.discard(table.table_number)
                reset.append(table.table_number)
            else:
                self._dirty.add(table.table_number)

        if full:
            self._force_full = False
        if reset:
            await self.repository.save_tables(tables)
        logger.debug(f"Completed-order sweep ({'full' if full else 'incremental'}): reset {reset}")
        return reset

    async def sweep_stale_orders(self) -> list[str]:
        """
        Force-finish open orders older than ``stale_after``.

        Returns:
            Ids of the orders that were closed
        """
        now = self.clock()
        stale = [
            o for o in await self.repository.load_orders()
            if not o.is_terminal and now - o.created_at > self.stale_after
        ]
        if not stale:
            return []

        closed: list[Order] = []
        for order in stale:
            minutes = int((now - order.created_at).total_seconds() // 60)
            try:
                updated = await self.engine.transition(
                    order.id,
                    OrderStatus.FINISHED,
                    note=f"Auto-completed after {minutes} minutes",
                    force=True,
                    publish=False,
                )
            except IllegalTransitionError:
                # Closed by someone else since we loaded it.
                continue
            if updated is not None:
                closed.append(updated)

        if closed:
            await self._release_tables_for(closed)
            for order in closed:
                await self.dispatcher.publish(OrderCompleted(
                    table_number=order.table_number,
                    order_id=order.id,
                ))
            logger.info(f"Auto-completed {len(closed)} stale order(s)")
        return [o.id for o in closed]

    async def _release_tables_for(self, orders: Iterable[Order]) -> list[int]:
        async with self._lock:
            tables = await self.repository.load_tables()
            by_number = {t.table_number: t for t in tables}
            now = self.clock()
            released = []
            for order in orders:
                table = by_number.get(order.table_number)
                if table is not None and table.current_order == order.id:
                    table.reset_occupancy(now)
                    self._dirty.discard(table.table_number)
                    released.append(table.table_number)
            if released:
                await self.repository.save_tables(tables)
            return released

    async def run_sweeps(self, full: bool = False) -> SweepReport:
        """One reconciliation tick: completed-order sweep, then stale-order sweep."""
        self.sweeps += 1
        if self.full_sweep_every and self.sweeps % self.full_sweep_every == 0:
            full = True
        report = SweepReport(full=full or self._force_full)
        report.tables_reset = await self.sweep_completed_orders(full=full)
        report.orders_closed = await self.sweep_stale_orders()
        return report

    # =========================================================================
    # TABLE PROVISIONING
    # =========================================================================

    async def _load_for_change(self, action: str) -> list[TableSession]:
        """Tables for a read-modify-write; refuses when the read failed."""
        tables = await self.repository.load_tables()
        if self.repository.is_unreadable(TABLE_SESSIONS_KEY):
            logger.error(f"Cannot {action}: table sessions could not be read")
            raise StoreUnavailableError(TABLE_SESSIONS_KEY, action)
        return tables

    async def materialize_tables(
        self,
        restaurant_id: str,
        table_numbers: Optional[Iterable[int]] = None,
    ) -> list[TableSession]:
        """
        Ensure a table session row exists for every provisioned table.

        With ``table_numbers`` omitted the provisioned set is read from the
        restaurant's QR codes. Existing rows keep their occupancy; rows for
        tables no longer provisioned are kept as well.

        Raises:
            StoreUnavailableError: The table sessions could not be read
        """
        if table_numbers is None:
            provisioned = [
                (code.table_number, code.url, code.restaurant_id or restaurant_id)
                for code in await self.repository.load_qr_codes(restaurant_id)
            ]
        else:
            provisioned = [(int(n), None, restaurant_id) for n in table_numbers]

        async with self._lock:
            tables = await self._load_for_change("materialize tables")
            by_number = {t.table_number: t for t in tables}
            now = self.clock()
            changed = False

            for number, url, owner in provisioned:
                table = by_number.get(number)
                if table is None:
                    table = TableSession.new(number, restaurant_id=owner, qr_url=url, now=now)
                    tables.append(table)
                    by_number[number] = table
                    changed = True
                    logger.info(f"Creating table {number}")
                else:
                    if url and table.qr_url != url:
                        table.qr_url = url
                        table.last_updated = now
                        changed = True
                    if table.restaurant_id is None:
                        table.restaurant_id = owner
                        table.last_updated = now
                        changed = True
                self._dirty.add(number)

            tables.sort(key=lambda t: t.table_number)
            if changed:
                await self.repository.save_tables(tables)
            return tables

    async def add_table(self, restaurant_id: str) -> TableSession:
        """Add a table by hand, numbered after every existing or provisioned table."""
        codes = await self.repository.load_qr_codes(restaurant_id)
        async with self._lock:
            tables = await self._load_for_change("add a table")
            numbers = [t.table_number for t in tables] + [c.table_number for c in codes]
            number = max(numbers) + 1 if numbers else 1

            table = TableSession.new(
                number,
                restaurant_id=restaurant_id,
                qr_url=f"/menu?restaurant={restaurant_id}&table={number}",
                now=self.clock(),
                is_manual=True,
            )
            tables.append(table)
            await self.repository.save_tables(tables)
        logger.info(f"Added table {number} manually")
        return table

    # =========================================================================
    # STAFF ACTIONS
    # =========================================================================

    async def _find_for_change(self, table_number: int, action: str) -> tuple[list[TableSession], Optional[TableSession]]:
        tables = await self._load_for_change(action)
        return tables, next((t for t in tables if t.table_number == table_number), None)

    async def reserve(
        self,
        table_number: int,
        customer_name: str,
        time: datetime,
        notes: Optional[str] = None,
    ) -> Optional[TableSession]:
        """Reserve an available table."""
        async with self._lock:
            tables, table = await self._find_for_change(table_number, "reserve")
            if table is None:
                return None
            if table.status != TableStatus.AVAILABLE:
                raise TableStateError(table_number, table.status.value, "reserve", TableStatus.AVAILABLE.value)

            now = self.clock()
            table.status = TableStatus.RESERVED
            table.reserved_by = customer_name
            table.reserved_time = time
            table.reservation_notes = notes
            table.last_activity = now
            table.last_updated = now
            await self.repository.save_tables(tables)
        logger.info(f"Table {table_number} reserved for {customer_name} at {time.isoformat()}")
        return table

    async def mark_clean(self, table_number: int) -> Optional[TableSession]:
        """A table waiting for cleaning is ready again."""
        async with self._lock:
            tables, table = await self._find_for_change(table_number, "mark clean")
            if table is None:
                return None
            if table.status != TableStatus.NEEDS_CLEANING:
                raise TableStateError(table_number, table.status.value, "mark clean", TableStatus.NEEDS_CLEANING.value)

            table.reset_occupancy(self.clock())
            await self.repository.save_tables(tables)
        logger.info(f"Table {table_number} cleaned")
        return table

    async def mark_available(self, table_number: int) -> Optional[TableSession]:
        """
        Staff override: release the table from any state and finish its
        current order if that order is still open.
        """
        async with self._lock:
            tables, table = await self._find_for_change(table_number, "mark available")
            if table is None:
                return None

            order_id = table.current_order
            table.reset_occupancy(self.clock())
            self._dirty.discard(table_number)
            await self.repository.save_tables(tables)
        logger.info(f"Table {table_number} manually marked available")

        # Outside the lock: the transition's events come back to apply_event.
        if order_id:
            order = await self.engine.get_by_id(order_id)
            if order is not None and not order.is_terminal:
                await self.engine.transition(
                    order_id,
                    OrderStatus.FINISHED,
                    note="Table marked available by staff",
                    force=True,
                )
        return table

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_tables(self) -> list[TableSession]:
        return sorted(await self.repository.load_tables(), key=lambda t: t.table_number)

    async def get_table(self, table_number: int) -> Optional[TableSession]:
        tables = await self.repository.load_tables()
        return next((t for t in tables if t.table_number == table_number), None)

    async def summary(self) -> dict:
        """Counts per status plus seated customers and open revenue."""
        tables = await self.repository.load_tables()
        counts = {status.value: 0 for status in TableStatus}
        for table in tables:
            counts[table.status.value] += 1
        return {
            "total": len(tables),
            "by_status": counts,
            "seated_customers": sum(t.customers for t in tables if t.status != TableStatus.AVAILABLE),
            "open_revenue": round(sum(t.revenue for t in tables if t.status in SEATED_STATUSES), 2),
        }
