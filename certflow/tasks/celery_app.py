from celery import Celery

from certflow.config import settings

app = Celery(
    "certflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "certflow.tasks.notification_tasks.*": {"queue": "notifications"},
    },
)

app.autodiscover_tasks(["certflow.tasks.notification_tasks"])
