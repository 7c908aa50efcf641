"""Celery application configuration."""

from celery import Celery
from kombu import Queue, Exchange

from csvimport.config import settings

celery_app = Celery(
    "csvimport",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "csvimport.workers.tasks",
    ],
)

# Task queues
celery_app.conf.task_queues = [
    Queue("import", Exchange("import"), routing_key="import"),
    Queue("default", Exchange("default"), routing_key="default"),
]

# Task routing
celery_app.conf.task_routes = {
    "csvimport.workers.tasks.*": {"queue": "import"},
}

# One drain at a time per worker; the scheduler assumes a single active instance
celery_app.conf.worker_concurrency = 1
celery_app.conf.worker_prefetch_multiplier = 1

# Periodic drain of queued jobs, for deployments without the HTTP trigger
celery_app.conf.beat_schedule = {
    "drain-csv-jobs": {
        "task": "csvimport.workers.tasks.drain_csv_jobs",
        "schedule": float(settings.celery_drain_interval_seconds),
    },
}

# Task serialization
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]

# Result expiration
celery_app.conf.result_expires = 86400  # 24 hours

# Visibility timeout for long-running tasks
celery_app.conf.broker_transport_options = {
    "visibility_timeout": 3600,  # 1 hour
}

# Timezone
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True
