# orderflow/repos/payment_repo.py
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from orderflow.data.models.payment import PaymentModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: int, user_id: int | None = None, for_update: bool = False) -> PaymentModel | None:
        stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
        if user_id is not None:
            stmt = stmt.where(PaymentModel.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_order(self, order_id: int) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel).where(PaymentModel.order_id == order_id)
        ).scalar_one_or_none()

    def get_by_external_reference(self, external_reference: str) -> PaymentModel | None:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.external_reference == external_reference)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_payments(self, user_id: int, page: int, limit: int) -> tuple[list[PaymentModel], int]:
        stmt = select(PaymentModel).where(PaymentModel.user_id == user_id)
        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        offset = (page - 1) * limit
        payments = self.db.execute(
            stmt.order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(payments), total
