"""
Celery application: broker and result backend from settings.
Tasks are in wardrobe_billing.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from wardrobe_billing.core.config import settings

celery_app = Celery(
    "wardrobe_billing",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "wardrobe_billing.workers.tasks.subscriptions",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "expire-lapsed-subscriptions": {
            "task": "wardrobe_billing.workers.tasks.subscriptions.expire_lapsed_subscriptions",
            "schedule": crontab(minute=5),
        },
    },
)
