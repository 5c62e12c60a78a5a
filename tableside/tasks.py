"""
Celery Tasks
Background reconciliation of table sessions against the order collection.
Writes land in the shared record store; a running API notices them through
its storage watcher.
"""

import asyncio
import logging
import time
from datetime import datetime

from tableside.celery_worker import celery_app
from tableside.services.container import build_services

logger = logging.getLogger(__name__)


async def _reconcile_once() -> dict:
    services = build_services()
    await services.start(background=False)
    try:
        report = await services.reconciler.run_sweeps(full=True)
    finally:
        await services.stop()
    return {
        'tables_reset': report.tables_reset,
        'orders_closed': report.orders_closed,
        'changed': report.changed,
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def reconcile_tables(self) -> dict:
    """
    Run the completed-order and stale-order sweeps over every table.

    Returns:
        dict: Tables reset and orders auto-finished in this run
    """
    task_id = self.request.id
    logger.info(f"🧹 Task {task_id}: Reconciling table sessions")
    start_time = time.time()

    try:
        result = asyncio.run(_reconcile_once())
    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: Reconciliation error after {elapsed}s - {e}")
        # Celery will auto-retry based on configuration
        raise

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    logger.info(
        f"✅ Task {task_id}: {len(result['tables_reset'])} table(s) reset, "
        f"{len(result['orders_closed'])} order(s) closed in {elapsed}s"
    )
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
