# orderflow/celery_worker.py
from celery import Celery

from orderflow.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    ORDER_EXPIRY_INTERVAL_SECONDS,
)

celery_app = Celery(
    "orderflow",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# taski musza byc zaimportowane explicite, zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "orderflow.tasks.expire",
    "orderflow.services.event_publisher",
)

celery_app.conf.beat_schedule = {
    "expire-unpaid-orders": {
        "task": "orderflow.tasks.expire.expire_unpaid_orders_task",
        "schedule": ORDER_EXPIRY_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
