# orderflow/services/order_state_machine.py
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from orderflow.data.models.order import OrderModel, OrderStatusHistoryModel
from orderflow.domain.errors import InvalidTransitionError
from orderflow.domain.events import StatusChanged
from orderflow.domain.statuses import OrderStatus, can_transition
from orderflow.repos.order_repo import OrderRepo
from orderflow.services.cache_service import order_key
from orderflow.services.stock_ledger import StockLedger
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class OrderStateMachine:
    """
    Jedyne miejsce, ktore zmienia order.status.

    Kazde przejscie dopisuje wiersz historii w tej samej transakcji, wiec
    order.status zawsze rowna sie to_status najnowszego wiersza historii.
    Wolajacy musi trzymac blokade wiersza zamowienia (get_order_for_update)
    i otwarty UnitOfWork.
    """

    def __init__(self, db: Session):
        self.repo = OrderRepo(db)
        self.stock = StockLedger(db)

    def record_creation(self, order: OrderModel, actor_id: int | None, note: str = "Order created"):
        return self.repo.add_history(
            OrderStatusHistoryModel(
                order_id=order.id,
                from_status=None,
                to_status=order.status,
                note=note,
                actor_id=actor_id,
            )
        )

    def apply(
        self,
        uow,
        order: OrderModel,
        to_status: OrderStatus,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> OrderStatusHistoryModel:
        from_status = OrderStatus(order.status)

        if not can_transition(from_status, to_status):
            raise InvalidTransitionError(
                f"Order {order.order_number} cannot go from {from_status.value} to {to_status.value}"
            )

        now = datetime.now(timezone.utc)

        if to_status is OrderStatus.CANCELLED:
            #zwrot na magazyn w tej samej transakcji co zmiana statusu
            for item in order.items:
                self.stock.adjust_stock(item.product_id, item.quantity, uow=uow)
        elif to_status is OrderStatus.SHIPPED:
            order.shipping_date = now
        elif to_status is OrderStatus.DELIVERED:
            order.delivery_date = now

        order.status = to_status.value
        order.updated_at = now

        entry = self.repo.add_history(
            OrderStatusHistoryModel(
                order_id=order.id,
                from_status=from_status.value,
                to_status=to_status.value,
                note=note,
                actor_id=actor_id,
            )
        )

        logger.info(
            f"Order {order.order_number}: {from_status.value} -> {to_status.value} (actor {actor_id})"
        )

        uow.invalidate(order_key(order.id))
        uow.record(
            StatusChanged(
                order_id=order.id,
                order_number=order.order_number,
                from_status=from_status.value,
                to_status=to_status.value,
                actor_id=actor_id,
                note=note,
            )
        )
        return entry
