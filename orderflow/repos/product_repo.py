# orderflow/repos/product_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int, for_update: bool = False) -> ProductModel | None:
        stmt = select(ProductModel).where(ProductModel.id == product_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()

    def adjust_stock(self, product_id: int, delta: int) -> int:
        """
        Atomowy update stanu z warunkiem stock + delta >= 0.
        Zwraca rowcount - 0 oznacza brak produktu albo za maly stan.
        """
        return (
            self.db.query(ProductModel)
            .filter(
                ProductModel.id == product_id,
                ProductModel.stock + delta >= 0,
            )
            .update(
                {ProductModel.stock: ProductModel.stock + delta},
                synchronize_session=False,
            )
        )
