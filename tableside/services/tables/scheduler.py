"""
Sweep Scheduler

Runs the reconciler's sweeps on a fixed interval in the web process.
"""

import logging

from tableside.services.periodic import PeriodicTask
from tableside.services.tables.reconciler import SweepReport, TableSessionReconciler

logger = logging.getLogger(__name__)


class SweepScheduler(PeriodicTask):
    """Periodic safety net behind the event-driven table updates."""

    name = "sweep-scheduler"

    def __init__(self, reconciler: TableSessionReconciler, interval: float = 2.0):
        super().__init__(interval)
        self.reconciler = reconciler
        self.last_report: SweepReport = SweepReport()

    async def tick(self) -> SweepReport:
        report = await self.reconciler.run_sweeps()
        self.last_report = report
        if report.changed:
            logger.info(
                f"Sweep repaired {len(report.tables_reset)} table(s), "
                f"closed {len(report.orders_closed)} stale order(s)"
            )
        return report
