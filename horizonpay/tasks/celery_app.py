"""
Celery application configuration.

Defines the Celery app with Redis broker, task autodiscovery,
and the periodic beat schedule for session housekeeping.
"""

from celery import Celery

from horizonpay.config import settings

celery_app = Celery(
    "horizonpay",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Auto-discover tasks in the tasks package
celery_app.autodiscover_tasks(["horizonpay.tasks"], related_name="session_tasks")

# Beat schedule — periodic tasks
celery_app.conf.beat_schedule = {
    "expire-stale-sessions": {
        "task": "horizonpay.tasks.session_tasks.expire_stale_sessions",
        "schedule": settings.SESSION_SWEEP_INTERVAL_SECONDS,
    },
}
