#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from orderflow.data.models.product import ProductModel
from orderflow.data.models.cart_line import CartLineModel
from orderflow.data.models.order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from orderflow.data.models.payment import PaymentModel

__all__ = [
    "ProductModel",
    "CartLineModel",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
    "PaymentModel",
]
