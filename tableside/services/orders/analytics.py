"""
Analytics Recorder

Best-effort summary updates written when an order is finished: cumulative
revenue, the completed-order history and per-item order counts. Nothing in
the core reads these back, so every failure is logged and ignored.
"""

import logging
from datetime import datetime

from tableside.models import Order
from tableside.services.store.repository import (
    MENU_ANALYTICS_KEY,
    ORDER_HISTORY_KEY,
    TOTAL_REVENUE_KEY,
    RecordRepository,
)

logger = logging.getLogger(__name__)


class AnalyticsRecorder:
    """Writes the analytics keys owned by the dashboard."""

    def __init__(self, repository: RecordRepository):
        self.repository = repository

    async def record_finished(self, order: Order, completed_at: datetime) -> bool:
        """Fold a newly finished order into the counters."""
        try:
            revenue = await self.repository.read_json(TOTAL_REVENUE_KEY, default=0)
            try:
                revenue = float(revenue or 0)
            except (TypeError, ValueError):
                revenue = 0.0
            ok = await self.repository.write_json(
                TOTAL_REVENUE_KEY, round(revenue + order.total, 2)
            )

            history = await self.repository.read_json(ORDER_HISTORY_KEY, default=[])
            if not isinstance(history, list):
                history = []
            history.append({
                **order.to_document(),
                "completedAt": completed_at.isoformat(),
                "revenue": order.total,
            })
            ok = await self.repository.write_json(ORDER_HISTORY_KEY, history) and ok

            analytics = await self.repository.read_json(MENU_ANALYTICS_KEY, default=None)
            if not isinstance(analytics, dict):
                analytics = {"itemViews": {}, "itemOrders": {}, "totalViews": 0, "totalOrders": 0}
            item_orders = analytics.setdefault("itemOrders", {})
            analytics["totalOrders"] = int(analytics.get("totalOrders") or 0) + 1
            for item in order.items:
                item_orders[item.item_id] = int(item_orders.get(item.item_id) or 0) + 1
            ok = await self.repository.write_json(MENU_ANALYTICS_KEY, analytics) and ok
        except Exception:  # noqa: BLE001
            logger.exception(f"Error updating analytics for order {order.id}")
            return False

        if not ok:
            logger.warning(f"Analytics for order {order.id} only partially saved")
        return ok
