from celery import Celery
from celery.signals import after_setup_logger

from tradeguard.common.logging import setup_logging
from tradeguard.config import settings

app = Celery(
    "tradeguard",
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
        "tradeguard.tasks.dispute_tasks.*": {"queue": "disputes"},
    },
    beat_schedule={
        "check-expired-negotiations": {
            "task": "tradeguard.tasks.dispute_tasks.check_expired_negotiations",
            "schedule": settings.EXPIRY_SCAN_INTERVAL_MINUTES * 60.0,
        },
        "check-expired-arbitrations": {
            "task": "tradeguard.tasks.dispute_tasks.check_expired_arbitrations",
            "schedule": settings.EXPIRY_SCAN_INTERVAL_MINUTES * 60.0,
        },
        "dispatch-dispute-events": {
            "task": "tradeguard.tasks.dispute_tasks.dispatch_dispute_events",
            "schedule": 60.0,  # every minute
        },
    },
)

app.autodiscover_tasks(["tradeguard.tasks.dispute_tasks"])


@after_setup_logger.connect
def _configure_logging(**kwargs):
    setup_logging()
