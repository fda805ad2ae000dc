from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric
from sqlalchemy.orm import relationship

from orderflow.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    user_id = Column(Integer, nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(40), nullable=False)  # bank_transfer, credit_card, e_wallet
    status = Column(String(20), nullable=False, default="pending")  # pending, paid, failed, refunded

    external_reference = Column(String(100), unique=True, nullable=True)
    payment_url = Column(String)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    order = relationship("OrderModel", back_populates="payment")
