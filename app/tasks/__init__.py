"""Celery app and task registration.

The recurring refresh runs in the API process (PriceRefreshScheduler), since
its cadence follows NSE hours and must never overlap. Celery carries the
one-off runs admins queue from the API, plus a daily promotion backstop for
deployments that run with the in-process scheduler disabled.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

celery_app = Celery(
    "stockwatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        # 18:30 UTC = 00:00 IST, after the session and any late exits
        "promote-expired-exits-daily": {
            "task": "app.tasks.price_tasks.promote_expired_exits",
            "schedule": crontab(minute=30, hour=18),
        },
    },
)

# Import tasks so Celery discovers them
from app.tasks import price_tasks  # noqa: F401, E402
