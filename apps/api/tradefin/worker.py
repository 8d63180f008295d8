"""
Celery worker for the tradefin engine.

Start worker:    celery -A tradefin.worker worker --loglevel=info
Start beat:      celery -A tradefin.worker beat --loglevel=info
Start both:      celery -A tradefin.worker worker --beat --loglevel=info
"""
from celery import Celery

from tradefin.core.config import settings
from tradefin.core.sentry import init_sentry

# Must run before the Celery app is created
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

celery_app = Celery(
    "tradefin_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "tradefin.tasks.ledger",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24h
)

celery_app.conf.beat_schedule = {
    # ── Ledger reconciliation ───────────────────────────────────────────────
    "reconcile-ledger-anchors": {
        "task": "tasks.reconcile_ledger_anchors",
        "schedule": settings.RECONCILE_INTERVAL_SECONDS,
    },
}
