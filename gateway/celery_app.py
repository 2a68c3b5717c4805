"""Celery application instance shared across the gateway.

Start a worker and the beat scheduler with:
    celery -A gateway.celery_app worker -Q outbound -l info --concurrency=1
    celery -A gateway.celery_app beat -l info
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("olive_gateway", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True

celery_app.conf.task_routes = {
    "gateway.workers.outbound.process_queue": {"queue": "outbound"},
    "gateway.workers.outbound.send_message": {"queue": "outbound"},
}

# Beat schedule: drain due envelopes on a fixed cadence
celery_app.conf.beat_schedule = {
    "process-outbound-queue": {
        "task": "gateway.workers.outbound.process_queue",
        "schedule": settings.GATEWAY_QUEUE_INTERVAL,
    }
}

# --- Ensure tasks are registered ---
import gateway.workers.outbound  # noqa: E402,F401
