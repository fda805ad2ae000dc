# orderflow/domain/events.py
"""
Events published after a unit of work commits.

Closed set of variants discriminated by ``kind``; the kind doubles as the
broker topic.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class OrderCreated(BaseModel):
    kind: Literal["order.created"] = "order.created"
    order_id: int
    order_number: str
    user_id: int
    payment_id: int
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    status: str


class StatusChanged(BaseModel):
    kind: Literal["order.status_changed"] = "order.status_changed"
    order_id: int
    order_number: str
    from_status: str
    to_status: str
    actor_id: int | None = None
    note: str | None = None


class PaymentSucceeded(BaseModel):
    kind: Literal["payment.succeeded"] = "payment.succeeded"
    payment_id: int
    order_id: int
    amount: Decimal
    external_reference: str


class PaymentFailed(BaseModel):
    kind: Literal["payment.failed"] = "payment.failed"
    payment_id: int
    order_id: int
    amount: Decimal
    external_reference: str
    reason: str | None = None


Event = Annotated[
    Union[OrderCreated, StatusChanged, PaymentSucceeded, PaymentFailed],
    Field(discriminator="kind"),
]


class EventEnvelope(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    service: str
    data: Event

    @classmethod
    def wrap(cls, event, service: str) -> "EventEnvelope":
        return cls(event_name=event.kind, service=service, data=event)
