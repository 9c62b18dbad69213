from celery import Celery

from recommender.core.config import settings
from recommender.utils.logger import configure_logging

configure_logging(settings.log_level)

celery_app = Celery(
    "recommender",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["recommender.services.tasks"]
)

celery_app.conf.update(
    # Memory optimization settings
    result_expires=3600,
    task_acks_late=True,
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks to prevent memory leaks
    worker_prefetch_multiplier=1,    # Process one task at a time

    # Connection settings
    broker_connection_retry_on_startup=True,
    broker_pool_limit=10,

    # Population runs for hours on the maintenance worker; updates stay on sync
    task_routes={
        'recommender.services.tasks.populate_index_task': {'queue': 'maintenance'},
        'recommender.services.tasks.update_item_task': {'queue': 'sync'},
    },

    # Memory management
    worker_max_memory_per_child=200000,  # 200MB limit per worker
)
