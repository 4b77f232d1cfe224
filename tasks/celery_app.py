"""
Celery application configuration.

This module sets up Celery for background taxonomy imports and maintenance
with Redis as the message broker and result backend.
"""

import os
from celery import Celery
from kombu import Exchange, Queue

# Get Redis URL from environment
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', REDIS_URL)
JOB_RETENTION_DAYS = int(os.getenv('JOB_RETENTION_DAYS', '30'))

# Create Celery application
celery_app = Celery(
    'service_taxonomy',
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=['tasks.import_tasks', 'tasks.validation_tasks']
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
    task_time_limit=1800,  # 30 minutes hard timeout
    task_soft_time_limit=1500,  # 25 minutes soft timeout
    worker_prefetch_multiplier=1,  # One task at a time per worker

    # Results
    result_expires=3600,
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
    Queue('maintenance', Exchange('maintenance'), routing_key='maintenance.#'),
    Queue('validation', Exchange('validation'), routing_key='validation.#'),
)

# Task routes
celery_app.conf.task_routes = {
    'tasks.import_tasks.import_catalog_file': {'queue': 'import', 'routing_key': 'import.catalog'},
    'tasks.import_tasks.reset_taxonomy': {'queue': 'maintenance', 'routing_key': 'maintenance.reset'},
    'tasks.import_tasks.cleanup_old_jobs': {'queue': 'maintenance', 'routing_key': 'maintenance.jobs'},
    'tasks.validation_tasks.verify_taxonomy': {'queue': 'validation', 'routing_key': 'validation.taxonomy'},
}

# Prune finished job records once a day
celery_app.conf.beat_schedule = {
    'cleanup-old-jobs': {
        'task': 'tasks.import_tasks.cleanup_old_jobs',
        'schedule': 86400.0,
        'kwargs': {'days_to_keep': JOB_RETENTION_DAYS},
    },
}


if __name__ == '__main__':
    celery_app.start()
