"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, plus a
beat schedule that reconciles table sessions out of process.
"""

from celery import Celery

from tableside.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'tableside_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['tableside.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=1,  # Sweeps write shared collections

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,

    # Periodic reconciliation
    beat_schedule={
        'reconcile-tables': {
            'task': 'tableside.tasks.reconcile_tables',
            'schedule': float(settings.celery_sweep_seconds),
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
