# orderflow/services/event_publisher.py
from orderflow.celery_worker import celery_app
from orderflow.domain.events import EventEnvelope
from orderflow.utils.settings import SERVICE_NAME
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class EventPublisher:
    """
    Publikacja zdarzen domenowych przez Celery (fire-and-forget).
    Wolane dopiero po commicie; blad brokera jest logowany i porzucany.
    """

    def __init__(self, service: str = SERVICE_NAME):
        self.service = service

    def publish(self, event) -> bool:
        envelope = EventEnvelope.wrap(event, service=self.service)
        try:
            deliver_event_task.delay(event.kind, envelope.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Dropping event {event.kind} ({envelope.event_id}): {e}")
            return False

        logger.info(f"Published {event.kind} ({envelope.event_id})")
        return True


@celery_app.task(name="orderflow.services.event_publisher.deliver_event_task")
def deliver_event_task(topic: str, payload: dict):
    """
    Celery task - odbiorcy (powiadomienia, magazyn, analityka) subskrybuja topic.
    Tutaj tylko logujemy doreczenie.
    """
    logger.info(f"[EVENT] {topic}: {payload.get('event_id')} {payload.get('data')}")
    return {"topic": topic, "event_id": payload.get("event_id"), "status": "delivered"}
