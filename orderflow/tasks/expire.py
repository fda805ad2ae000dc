# orderflow/tasks/expire.py
from datetime import datetime, timezone

from orderflow.celery_worker import celery_app
from orderflow.data.database import SessionLocal
from orderflow.services.cache_service import CacheService
from orderflow.services.event_publisher import EventPublisher
from orderflow.services.order_service import OrderService
from orderflow.services.shipping import default_shipping_policy
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


def run_expiry(db, publisher=None, cache=None, now: datetime | None = None) -> list[int]:
    service = OrderService(
        db=db,
        shipping=default_shipping_policy(),
        publisher=publisher,
        cache=cache,
    )
    return service.expire_unpaid_orders(now or datetime.now(timezone.utc))


@celery_app.task(name="orderflow.tasks.expire.expire_unpaid_orders_task")
def expire_unpaid_orders_task():
    logger.info("Expire unpaid orders task started")

    db = SessionLocal()
    try:
        expired = run_expiry(db, publisher=EventPublisher(), cache=CacheService())
        logger.info(f"Cancelled {len(expired)} expired orders")
        return {"expired": expired}
    finally:
        db.close()
