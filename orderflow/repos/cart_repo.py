# orderflow/repos/cart_repo.py
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.data.models.cart_line import CartLineModel
from orderflow.data.models.product import ProductModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_line(self, line_id: int, user_id: int) -> CartLineModel | None:
        return self.db.execute(
            select(CartLineModel).where(
                CartLineModel.id == line_id,
                CartLineModel.user_id == user_id,
            )
        ).scalar_one_or_none()

    def get_line_for_product(self, user_id: int, product_id: int) -> CartLineModel | None:
        return (
            self.db.query(CartLineModel)
            .populate_existing()
            .filter(
                CartLineModel.user_id == user_id,
                CartLineModel.product_id == product_id,
            )
            .one_or_none()
        )

    def get_lines(
        self,
        user_id: int,
        line_ids: Sequence[int] | None = None,
        for_update: bool = False,
    ) -> list[CartLineModel]:
        stmt = select(CartLineModel).where(CartLineModel.user_id == user_id)
        if line_ids is not None:
            stmt = stmt.where(CartLineModel.id.in_(line_ids))
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.execute(stmt.order_by(CartLineModel.id)).scalars().all())

    def get_lines_with_products(self, user_id: int) -> list[tuple[CartLineModel, ProductModel]]:
        stmt = (
            select(CartLineModel, ProductModel)
            .join(ProductModel, ProductModel.id == CartLineModel.product_id)
            .where(CartLineModel.user_id == user_id)
            .order_by(CartLineModel.id)
        )
        return [(line, product) for line, product in self.db.execute(stmt).all()]

    def increment_quantity(self, user_id: int, product_id: int, quantity: int) -> int:
        """UPDATE ... SET quantity = quantity + :q, returns rowcount."""
        return (
            self.db.query(CartLineModel)
            .filter(
                CartLineModel.user_id == user_id,
                CartLineModel.product_id == product_id,
            )
            .update(
                {CartLineModel.quantity: CartLineModel.quantity + quantity},
                synchronize_session=False,
            )
        )

    def add_line(self, line: CartLineModel) -> CartLineModel:
        self.db.add(line)
        self.db.flush()
        return line

    def delete_line(self, line_id: int, user_id: int) -> int:
        return (
            self.db.query(CartLineModel)
            .filter(CartLineModel.id == line_id, CartLineModel.user_id == user_id)
            .delete(synchronize_session=False)
        )

    def delete_lines(self, line_ids: Sequence[int]) -> int:
        if not line_ids:
            return 0
        return (
            self.db.query(CartLineModel)
            .filter(CartLineModel.id.in_(line_ids))
            .delete(synchronize_session=False)
        )

    def clear(self, user_id: int) -> int:
        return (
            self.db.query(CartLineModel)
            .filter(CartLineModel.user_id == user_id)
            .delete(synchronize_session=False)
        )
