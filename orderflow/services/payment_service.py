# orderflow/services/payment_service.py
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from sqlalchemy.orm import Session

from orderflow.data.models.payment import PaymentModel
from orderflow.domain.errors import (
    AmountMismatchError,
    ConflictingPaymentStateError,
    NotFoundError,
    UnknownPaymentError,
    ValidationError,
)
from orderflow.domain.events import PaymentFailed, PaymentSucceeded
from orderflow.domain.statuses import (
    OrderStatus,
    PaymentStatus,
    TERMINAL_PAYMENT_STATUSES,
    map_gateway_status,
)
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.repos.unit_of_work import UnitOfWork
from orderflow.services.cache_service import order_key
from orderflow.services.order_service import check_paging, pagination
from orderflow.services.order_state_machine import OrderStateMachine
from orderflow.utils.retry import storage_retry
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")

# po udanej platnosci zamowienie przechodzi tutaj
POST_PAYMENT_STATUS = OrderStatus.CONFIRMED


def payment_to_dict(payment: PaymentModel) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "user_id": payment.user_id,
        "amount": payment.amount,
        "method": payment.method,
        "status": payment.status,
        "external_reference": payment.external_reference,
        "payment_url": payment.payment_url,
        "expires_at": payment.expires_at,
        "paid_at": payment.paid_at,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
    }


class PaymentService:
    """
    Rekoncyliacja callbackow bramki platnosci ze stanem zamowienia.

    Status platnosci zmienia tylko apply_callback - nigdy bezposrednio klient.
    Callback moze przyjsc dwa razy albo w zlej kolejnosci, dlatego:
    - powtorka tego samego statusu koncowego to no-op,
    - inny status koncowy to ConflictingPaymentStateError,
    - zla kwota to AmountMismatchError bez zadnego zapisu.
    Zmiana platnosci i zamowienia idzie w jednej transakcji.
    """

    def __init__(self, db: Session, publisher=None, cache=None):
        self.db = db
        self.repo = PaymentRepo(db)
        self.orders = OrderRepo(db)
        self.state_machine = OrderStateMachine(db)
        self.publisher = publisher
        self.cache = cache

    def _unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.db, publisher=self.publisher, cache=self.cache)

    # =====================================================
    # COMMANDS
    # =====================================================
    @storage_retry()
    def apply_callback(self, external_reference: str, gateway_status: str, amount) -> Dict[str, Any]:
        incoming = map_gateway_status(gateway_status)
        amount = self._parse_amount(amount)

        with self._unit_of_work() as uow:
            payment = self.repo.get_by_external_reference(external_reference)
            if payment is None:
                raise UnknownPaymentError(f"No payment with reference {external_reference}")

            order = self.orders.get_order_for_update(payment.order_id)
            if order is None:
                raise NotFoundError(f"Order {payment.order_id} not found")

            current = PaymentStatus(payment.status)

            #idempotency guard
            if current in TERMINAL_PAYMENT_STATUSES:
                if incoming is current:
                    logger.info(f"Duplicate callback {external_reference} ({incoming.value}), ignoring")
                    return self._result(payment, order, applied=False)
                if incoming is PaymentStatus.PENDING:
                    # spozniony callback "pending" po statusie koncowym
                    logger.info(f"Late pending callback {external_reference} for {current.value} payment, ignoring")
                    return self._result(payment, order, applied=False)
                raise ConflictingPaymentStateError(
                    f"Payment {payment.id} is {current.value}, callback says {incoming.value}"
                )

            if amount != Decimal(payment.amount).quantize(CENTS):
                logger.warning(
                    f"Callback {external_reference}: amount {amount} != recorded {payment.amount}, rejected"
                )
                raise AmountMismatchError(
                    f"Callback amount {amount} does not match payment amount {payment.amount}"
                )

            if incoming is PaymentStatus.PENDING:
                return self._result(payment, order, applied=False)

            if incoming is PaymentStatus.REFUNDED:
                raise ConflictingPaymentStateError(f"Payment {payment.id} was never paid, cannot be refunded")

            now = datetime.now(timezone.utc)

            if incoming is PaymentStatus.PAID:
                payment.status = PaymentStatus.PAID.value
                payment.paid_at = now
                order.payment_status = PaymentStatus.PAID.value

                if OrderStatus(order.status) is not POST_PAYMENT_STATUS:
                    self.state_machine.apply(
                        uow,
                        order,
                        POST_PAYMENT_STATUS,
                        note=f"Payment {external_reference} settled",
                        actor_id=None,
                    )

                uow.record(
                    PaymentSucceeded(
                        payment_id=payment.id,
                        order_id=order.id,
                        amount=payment.amount,
                        external_reference=external_reference,
                    )
                )
            else:
                # nieudana platnosc nie anuluje zamowienia - to osobna decyzja
                payment.status = PaymentStatus.FAILED.value
                order.payment_status = PaymentStatus.FAILED.value

                uow.record(
                    PaymentFailed(
                        payment_id=payment.id,
                        order_id=order.id,
                        amount=payment.amount,
                        external_reference=external_reference,
                        reason=gateway_status,
                    )
                )

            payment.updated_at = now
            order.updated_at = now
            uow.invalidate(order_key(order.id))
            self.db.flush()

            result = self._result(payment, order, applied=True)

        logger.info(
            f"Callback {external_reference} applied: payment {result['payment_status']}, "
            f"order {result['order_status']}"
        )
        return result

    def attach_gateway_reference(
        self,
        payment_id: int,
        external_reference: str,
        payment_url: str | None = None,
    ) -> Dict[str, Any]:
        """Zapisuje id transakcji nadane przez bramke po checkoucie."""
        with self._unit_of_work():
            payment = self.repo.get_payment(payment_id, for_update=True)
            if payment is None:
                raise NotFoundError(f"Payment {payment_id} not found")

            if payment.external_reference == external_reference:
                return payment_to_dict(payment)

            if payment.external_reference is not None:
                raise ConflictingPaymentStateError(
                    f"Payment {payment_id} already has reference {payment.external_reference}"
                )
            if payment.status != PaymentStatus.PENDING.value:
                raise ConflictingPaymentStateError(f"Payment {payment_id} is already {payment.status}")

            payment.external_reference = external_reference
            if payment_url:
                payment.payment_url = payment_url
            self.db.flush()
            result = payment_to_dict(payment)

        logger.info(f"Payment {payment_id} linked to gateway reference {external_reference}")
        return result

    # =====================================================
    # QUERIES
    # =====================================================
    def get_payment(self, payment_id: int, user_id: int) -> Dict[str, Any]:
        payment = self.repo.get_payment(payment_id, user_id=user_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment_to_dict(payment)

    def get_payment_for_order(self, order_id: int, user_id: int) -> Dict[str, Any]:
        payment = self.repo.get_by_order(order_id)
        if payment is None or payment.user_id != user_id:
            raise NotFoundError(f"Payment for order {order_id} not found")
        return payment_to_dict(payment)

    def list_payments(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        check_paging(page, limit)
        payments, total = self.repo.list_payments(user_id, page, limit)
        return {
            "items": [payment_to_dict(p) for p in payments],
            "pagination": pagination(page, limit, total),
        }

    @staticmethod
    def _parse_amount(amount) -> Decimal:
        try:
            return Decimal(str(amount)).quantize(CENTS)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid amount: {amount}")

    @staticmethod
    def _result(payment: PaymentModel, order, applied: bool) -> Dict[str, Any]:
        return {
            "payment_id": payment.id,
            "order_id": order.id,
            "payment_status": payment.status,
            "order_status": order.status,
            "applied": applied,
        }
