"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend for the
celery notification backend (SCHEDULER_BACKEND=celery).
"""

from celery import Celery

from orderbot.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'orderbot_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['orderbot.tasks']  # Module containing our tasks
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
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # A redelivered task is harmless: the claim/sent flags let one attempt through
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
