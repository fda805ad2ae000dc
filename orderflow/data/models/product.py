from sqlalchemy import Column, Integer, String, Boolean, Numeric, CheckConstraint

from orderflow.data.database import Base


class ProductModel(Base):
    """Catalog row; owned by the catalog, only stock is written from here."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),)
