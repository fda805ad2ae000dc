# orderflow/repos/order_repo.py
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from orderflow.data.models.order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from orderflow.data.models.payment import PaymentModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def add_items(self, items: list[OrderItemModel]) -> None:
        self.db.add_all(items)
        self.db.flush()

    def add_history(self, entry: OrderStatusHistoryModel) -> OrderStatusHistoryModel:
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_order(self, order_id: int, user_id: int | None = None) -> OrderModel | None:
        stmt = select(OrderModel).where(
            OrderModel.id == order_id,
            OrderModel.deleted_at.is_(None),
        )
        if user_id is not None:
            stmt = stmt.where(OrderModel.user_id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_updated_at(self, order_id: int) -> datetime | None:
        """Sama wersja wiersza, bez identity map."""
        stmt = select(OrderModel.updated_at).where(
            OrderModel.id == order_id,
            OrderModel.deleted_at.is_(None),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_order_for_update(self, order_id: int) -> OrderModel | None:
        """SELECT ... FOR UPDATE na korzeniu agregatu, zawsze swiezy odczyt."""
        stmt = (
            select(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_orders(
        self,
        page: int,
        limit: int,
        user_id: int | None = None,
        status: str | None = None,
    ) -> tuple[list[OrderModel], int]:
        stmt = select(OrderModel).where(OrderModel.deleted_at.is_(None))
        if user_id is not None:
            stmt = stmt.where(OrderModel.user_id == user_id)
        if status:
            stmt = stmt.where(OrderModel.status == status)

        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

        offset = (page - 1) * limit
        orders = self.db.execute(
            stmt.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(orders), total

    def get_history(self, order_id: int) -> list[OrderStatusHistoryModel]:
        return list(
            self.db.execute(
                select(OrderStatusHistoryModel)
                .where(OrderStatusHistoryModel.order_id == order_id)
                .order_by(OrderStatusHistoryModel.created_at, OrderStatusHistoryModel.id)
            ).scalars().all()
        )

    def find_expired_unpaid(self, now: datetime) -> list[int]:
        stmt = (
            select(OrderModel.id)
            .join(PaymentModel, PaymentModel.order_id == OrderModel.id)
            .where(
                OrderModel.status == "pending",
                OrderModel.deleted_at.is_(None),
                PaymentModel.status == "pending",
                PaymentModel.expires_at < now,
            )
            .order_by(OrderModel.id)
        )
        return list(self.db.execute(stmt).scalars().all())
