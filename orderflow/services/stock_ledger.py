# orderflow/services/stock_ledger.py
from sqlalchemy.orm import Session

from orderflow.data.models.product import ProductModel
from orderflow.domain.errors import InsufficientStockError, NotFoundError
from orderflow.repos.product_repo import ProductRepo
from orderflow.services.cache_service import product_key
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class StockLedger:
    """
    Stan magazynowy zmieniany w tej samej transakcji co zamowienie.
    Nie commituje - granica transakcji nalezy do wolajacego (UnitOfWork).
    """

    def __init__(self, db: Session):
        self.repo = ProductRepo(db)

    def get_product(self, product_id: int, for_update: bool = False) -> ProductModel | None:
        return self.repo.get_product(product_id, for_update=for_update)

    def adjust_stock(self, product_id: int, delta: int, uow=None) -> None:
        rowcount = self.repo.adjust_stock(product_id, delta)

        if rowcount == 0:
            if self.repo.get_product(product_id) is None:
                raise NotFoundError(f"Product {product_id} not found")
            raise InsufficientStockError(f"Insufficient stock for product {product_id}")

        logger.info(f"Stock of product {product_id} adjusted by {delta}")

        if uow is not None:
            uow.invalidate(product_key(product_id))
