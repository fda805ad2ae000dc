# orderflow/domain/statuses.py
from enum import Enum

from orderflow.domain.errors import ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: "str | OrderStatus") -> "OrderStatus":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown order status: {value}")


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


#tabela przejsc - wszystko spoza niej to InvalidTransitionError
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)

TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.REFUNDED})

#status nadany przez bramke -> nasz status platnosci
GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "paid": PaymentStatus.PAID,
    "success": PaymentStatus.PAID,
    "succeeded": PaymentStatus.PAID,
    "settlement": PaymentStatus.PAID,
    "capture": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "failure": PaymentStatus.FAILED,
    "deny": PaymentStatus.FAILED,
    "cancel": PaymentStatus.FAILED,
    "expire": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "refund": PaymentStatus.REFUNDED,
    "refunded": PaymentStatus.REFUNDED,
}


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ORDER_TRANSITIONS[from_status]


def map_gateway_status(gateway_status: str) -> PaymentStatus:
    mapped = GATEWAY_STATUS_MAP.get((gateway_status or "").strip().lower())
    if mapped is None:
        raise ValidationError(f"Unknown gateway status: {gateway_status}")
    return mapped
