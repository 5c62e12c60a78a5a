"""
Table sessions: reconciler and its sweep scheduler.
"""

from tableside.services.tables.reconciler import (
    TOKEN_TABLE_STATUS,
    SweepReport,
    TableSessionReconciler,
)
from tableside.services.tables.scheduler import SweepScheduler

__all__ = ["TOKEN_TABLE_STATUS", "SweepReport", "TableSessionReconciler", "SweepScheduler"]
