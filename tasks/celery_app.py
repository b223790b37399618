"""
Celery application configuration.

This module sets up Celery for background catalog imports with Redis
as the message broker and result backend.
"""

from celery import Celery
from kombu import Exchange, Queue

from api.config import settings

# Create Celery application
celery_app = Celery(
    'catalog',
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['tasks.import_tasks']
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    worker_prefetch_multiplier=1,  # One import at a time per worker

    # Results
    result_expires=settings.PROGRESS_CACHE_EXPIRY,
    result_extended=True,

    # Task routing
    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',

    # Worker configuration
    worker_max_tasks_per_child=100,
    worker_disable_rate_limits=False,

    # Task acknowledgement
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)

# Define task queues
celery_app.conf.task_queues = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('import', Exchange('import'), routing_key='import.#'),
)

# Task routes
celery_app.conf.task_routes = {
    'tasks.import_tasks.import_catalog_file': {'queue': 'import', 'routing_key': 'import.catalog'},
}


if __name__ == '__main__':
    celery_app.start()
