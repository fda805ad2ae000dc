from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.data.models.cart_line import CartLineModel
from orderflow.domain.errors import NotFoundError, ValidationError
from orderflow.repos.cart_repo import CartRepo
from orderflow.repos.product_repo import ProductRepo
from orderflow.repos.unit_of_work import UnitOfWork
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class CartService:
    """
    Koszyk uzytkownika: jedna linia na (user, produkt).
    commands (add, update, remove, clear) modyfikuja stan
    query (get) tylko odczyt, cena i dostepnosc zawsze z katalogu na zywo
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)

    #query - odczyt
    def get_cart(self, user_id: int) -> Dict[str, Any]:
        rows = self.repo.get_lines_with_products(user_id)

        items = [
            {
                "id": line.id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "name": product.name,
                "price": product.price,
                "stock": product.stock,
                "is_active": product.is_active,
                "line_total": product.price * line.quantity,
            }
            for line, product in rows
        ]
        total = sum((i["line_total"] for i in items), Decimal("0.00"))

        return {"user_id": user_id, "items": items, "total": total}

    #commands
    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        if self.products.get_product(product_id) is None:
            raise NotFoundError(f"Product {product_id} not found")

        try:
            line = self._merge_add(user_id, product_id, quantity)
        except IntegrityError:
            # rownolegly insert tej samej linii wygral - druga proba to juz zwykly increment
            logger.info(f"Concurrent insert of cart line ({user_id}, {product_id}), retrying as increment")
            line = self._merge_add(user_id, product_id, quantity)

        logger.info(f"Cart line {line['id']} of user {user_id}: product {product_id} qty {line['quantity']}")
        return line

    def _merge_add(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        with UnitOfWork(self.db):
            # atomowy increment zamiast read-modify-write
            if not self.repo.increment_quantity(user_id, product_id, quantity):
                self.repo.add_line(
                    CartLineModel(
                        user_id=user_id,
                        product_id=product_id,
                        quantity=quantity,
                    )
                )
            line = self.repo.get_line_for_product(user_id, product_id)
            result = self._line_dict(line)
        return result

    def update_line(self, line_id: int, user_id: int, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        with UnitOfWork(self.db):
            line = self.repo.get_line(line_id, user_id)
            if line is None:
                raise NotFoundError(f"Cart line {line_id} not found")
            line.quantity = quantity
            self.db.flush()
            result = self._line_dict(line)

        logger.info(f"Cart line {line_id} of user {user_id} set to qty {quantity}")
        return result

    def remove_line(self, line_id: int, user_id: int) -> None:
        with UnitOfWork(self.db):
            removed = self.repo.delete_line(line_id, user_id)
        logger.info(f"Remove cart line {line_id} of user {user_id} (removed: {removed})")

    def clear_cart(self, user_id: int) -> None:
        with UnitOfWork(self.db):
            removed = self.repo.clear(user_id)
        logger.info(f"Cleared cart of user {user_id} ({removed} lines)")

    @staticmethod
    def _line_dict(line: CartLineModel) -> Dict[str, Any]:
        return {
            "id": line.id,
            "user_id": line.user_id,
            "product_id": line.product_id,
            "quantity": line.quantity,
        }
