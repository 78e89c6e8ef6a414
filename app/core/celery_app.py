"""
Celery application: broker and result backend from settings.
Tasks are in app.settlement.tasks (reconciliation re-drive).
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.settlement.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    task_default_queue="settlement",
    result_expires=86400,
    beat_schedule={
        "redrive-pending-payments": {
            "task": "app.settlement.tasks.redrive_pending_payments",
            "schedule": crontab(minute=f"*/{settings.reconciliation_interval_minutes}"),
        },
    },
)

celery_app.conf.task_routes = {
    "app.settlement.tasks.redrive_pending_payments": {"queue": "settlement"},
}
