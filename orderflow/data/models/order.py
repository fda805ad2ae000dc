from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Text
from sqlalchemy.orm import relationship

from orderflow.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    order_number = Column(String(40), nullable=False, unique=True)

    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, confirmed, shipped, delivered, cancelled
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)

    address = Column(String, nullable=False)
    city = Column(String)
    province = Column(String)
    postal_code = Column(String)
    notes = Column(Text)

    #ustawiane w tej samej transakcji co insert platnosci
    payment_id = Column(Integer, nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending")  # pending, paid, failed, refunded

    shipping_date = Column(DateTime(timezone=True))
    delivery_date = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    deleted_at = Column(DateTime(timezone=True), index=True)

    items = relationship("OrderItemModel", back_populates="order", order_by="OrderItemModel.id")
    history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        order_by="OrderStatusHistoryModel.id",
    )
    payment = relationship("PaymentModel", back_populates="order", uselist=False)


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    __tablename__ = "order_status_histories"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(20))
    to_status = Column(String(20), nullable=False)
    note = Column(Text)
    actor_id = Column(Integer)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    order = relationship("OrderModel", back_populates="history")
