# orderflow/services/order_service.py
import math
import secrets
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Any, Dict, Sequence

from sqlalchemy.orm import Session

from orderflow.data.models.order import OrderModel, OrderItemModel
from orderflow.data.models.payment import PaymentModel
from orderflow.domain.errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    OrderFlowError,
    ProductUnavailableError,
    StaleQuoteError,
    ValidationError,
)
from orderflow.domain.events import OrderCreated
from orderflow.domain.schemas import OrderOut
from orderflow.domain.statuses import OrderStatus, PaymentStatus, TERMINAL_ORDER_STATUSES
from orderflow.repos.cart_repo import CartRepo
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.repos.unit_of_work import UnitOfWork
from orderflow.services.cache_service import order_key
from orderflow.services.order_state_machine import OrderStateMachine
from orderflow.services.shipping import ShippingAddress, ShipmentLine, ShippingPolicy
from orderflow.services.stock_ledger import StockLedger
from orderflow.utils.retry import storage_retry
from orderflow.utils.settings import (
    DEFAULT_PAYMENT_METHOD,
    ORDER_CACHE_TTL_SECONDS,
    PAYMENT_TTL_SECONDS,
)
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")
MAX_PAGE_SIZE = 100
# ile razy wyceniamy wysylke, gdy koszyk zmienia sie w trakcie checkoutu
QUOTE_ATTEMPTS = 2


def generate_order_number(now: datetime | None = None) -> str:
    """ORD-<UTC yyyymmddHHMMSS>-<8 hex>, sortuje sie po czasie utworzenia."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(4).upper()}"


def quote_basis(priced) -> tuple:
    """((product_id, quantity), ...) i subtotal - to, od czego zalezy wycena wysylki."""
    lines = tuple((line.product_id, line.quantity) for line, _ in priced)
    subtotal = sum((price * line.quantity for line, price in priced), Decimal("0.00")).quantize(CENTS)
    return lines, subtotal


def check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def order_to_dict(order: OrderModel, with_items: bool = True) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "user_id": order.user_id,
        "order_number": order.order_number,
        "status": order.status,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "total_amount": order.total_amount,
        "address": order.address,
        "city": order.city,
        "province": order.province,
        "postal_code": order.postal_code,
        "notes": order.notes,
        "payment_id": order.payment_id,
        "payment_status": order.payment_status,
        "shipping_date": order.shipping_date,
        "delivery_date": order.delivery_date,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }
    if with_items:
        data["items"] = [
            {
                "id": i.id,
                "product_id": i.product_id,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "subtotal": i.subtotal,
            }
            for i in order.items
        ]
    return data


def history_to_dict(entry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "order_id": entry.order_id,
        "from_status": entry.from_status,
        "to_status": entry.to_status,
        "note": entry.note,
        "actor_id": entry.actor_id,
        "created_at": entry.created_at,
    }


class OrderService:
    """
    Use case'y domeny zamowien: checkout, przejscia statusow, odczyty.
    Kolaboranci (cache, publisher, polityka wysylki) przychodza z zewnatrz.
    """

    def __init__(
        self,
        db: Session,
        shipping: ShippingPolicy,
        publisher=None,
        cache=None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.carts = CartRepo(db)
        self.payments = PaymentRepo(db)
        self.stock = StockLedger(db)
        self.state_machine = OrderStateMachine(db)
        self.shipping = shipping
        self.publisher = publisher
        self.cache = cache

    def _unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.db, publisher=self.publisher, cache=self.cache)

    # =====================================================
    # COMMANDS
    # =====================================================
    def checkout(
        self,
        user_id: int,
        address: ShippingAddress,
        line_ids: Sequence[int] | None = None,
        payment_method: str | None = None,
        notes: str | None = None,
    ) -> Dict[str, Any]:
        """
        Use Case: zamowienie z koszyka.

        1. Wycena wysylki bez blokad (polityka moze wolac zewnetrzny serwis)
        2. Pod blokadami: linie koszyka, aktualna cena z katalogu, aktywnosc
           i stan; jesli koszyk albo ceny sie zmienily - wycena od nowa
        3. subtotal + wysylka = total
        4. W jednej transakcji: stan magazynu, order, items, historia,
           platnosc, usuniecie linii koszyka
        5. OrderCreated dopiero po commicie
        """
        if not address.address:
            raise ValidationError("Shipping address is required")
        if line_ids is not None and not line_ids:
            raise EmptyCartError()

        for attempt in range(1, QUOTE_ATTEMPTS + 1):
            basis, shipping_cost = self._quote_shipping(user_id, address, line_ids)
            try:
                return self._place_order(user_id, address, line_ids, basis, shipping_cost, payment_method, notes)
            except StaleQuoteError:
                if attempt == QUOTE_ATTEMPTS:
                    raise
                logger.info(f"Cart of user {user_id} changed while quoting shipping, quoting again")

    def _load_lines(self, user_id: int, line_ids: Sequence[int] | None, for_update: bool):
        lines = self.carts.get_lines(user_id, line_ids, for_update=for_update)
        if not lines:
            raise EmptyCartError()
        if line_ids is not None and len(lines) != len(set(line_ids)):
            raise NotFoundError("Some cart lines do not belong to the user")
        # blokady produktow zawsze w tej samej kolejnosci - bez deadlockow
        return sorted(lines, key=lambda l: l.product_id)

    def _quote_shipping(
        self,
        user_id: int,
        address: ShippingAddress,
        line_ids: Sequence[int] | None,
    ) -> tuple[tuple, Decimal]:
        """Zwraca (podstawa wyceny, koszt wysylki); zadnych blokad w trakcie wywolania polityki."""
        priced = []
        for line in self._load_lines(user_id, line_ids, for_update=False):
            product = self.stock.get_product(line.product_id)
            if product is None or not product.is_active:
                raise ProductUnavailableError(f"Product {line.product_id} is not available")
            priced.append((line, Decimal(product.price).quantize(CENTS)))

        basis = quote_basis(priced)
        shipment = [ShipmentLine(product_id=product_id, quantity=quantity) for product_id, quantity in basis[0]]
        # koniec transakcji odczytu przed wywolaniem polityki
        self.db.rollback()

        shipping_cost = Decimal(self.shipping.quote(address, shipment, basis[1])).quantize(CENTS)
        return basis, shipping_cost

    def _place_order(
        self,
        user_id: int,
        address: ShippingAddress,
        line_ids: Sequence[int] | None,
        quoted_basis: tuple,
        shipping_cost: Decimal,
        payment_method: str | None,
        notes: str | None,
    ) -> Dict[str, Any]:
        with self._unit_of_work() as uow:
            # blokada linii - drugi rownolegly checkout tego samego koszyka zobaczy pusty koszyk
            lines = self._load_lines(user_id, line_ids, for_update=True)

            priced = []
            for line in lines:
                product = self.stock.get_product(line.product_id, for_update=True)
                if product is None or not product.is_active:
                    raise ProductUnavailableError(f"Product {line.product_id} is not available")
                if line.quantity > product.stock:
                    raise InsufficientStockError(
                        f"Product {product.id}: requested {line.quantity}, in stock {product.stock}"
                    )
                unit_price = Decimal(product.price).quantize(CENTS)
                priced.append((line, unit_price))

            if quote_basis(priced) != quoted_basis:
                raise StaleQuoteError()

            subtotal = quoted_basis[1]
            total_amount = subtotal + shipping_cost

            for line, _ in priced:
                self.stock.adjust_stock(line.product_id, -line.quantity, uow=uow)

            now = datetime.now(timezone.utc)
            order = self.repo.add_order(
                OrderModel(
                    user_id=user_id,
                    order_number=generate_order_number(now),
                    status=OrderStatus.PENDING.value,
                    subtotal=subtotal,
                    shipping_cost=shipping_cost,
                    total_amount=total_amount,
                    address=address.address,
                    city=address.city,
                    province=address.province,
                    postal_code=address.postal_code,
                    notes=notes,
                    payment_status=PaymentStatus.PENDING.value,
                )
            )

            self.repo.add_items(
                [
                    OrderItemModel(
                        order_id=order.id,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=price,
                        subtotal=(price * line.quantity).quantize(CENTS),
                    )
                    for line, price in priced
                ]
            )

            self.state_machine.record_creation(order, actor_id=user_id)

            payment = self.payments.add_payment(
                PaymentModel(
                    order_id=order.id,
                    user_id=user_id,
                    amount=total_amount,
                    method=payment_method or DEFAULT_PAYMENT_METHOD,
                    status=PaymentStatus.PENDING.value,
                    expires_at=now + timedelta(seconds=PAYMENT_TTL_SECONDS),
                )
            )
            order.payment_id = payment.id

            self.carts.delete_lines([line.id for line in lines])
            self.db.flush()

            uow.record(
                OrderCreated(
                    order_id=order.id,
                    order_number=order.order_number,
                    user_id=user_id,
                    payment_id=payment.id,
                    subtotal=subtotal,
                    shipping_cost=shipping_cost,
                    total_amount=total_amount,
                    status=order.status,
                )
            )
            result = order_to_dict(order)

        logger.info(
            f"Order {result['order_number']} created for user {user_id}: "
            f"subtotal {subtotal}, shipping {shipping_cost}, total {total_amount}"
        )
        return result

    @storage_retry()
    def transition_order(
        self,
        order_id: int,
        to_status: str | OrderStatus,
        note: str | None = None,
        actor_id: int | None = None,
    ) -> Dict[str, Any]:
        """
        Use Case: zmiana statusu zamowienia (operator / system).
        Status czytany pod blokada wiersza, walidacja wzgledem swiezego stanu.
        """
        target = OrderStatus.parse(to_status)

        with self._unit_of_work() as uow:
            order = self.repo.get_order_for_update(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")

            self.state_machine.apply(uow, order, target, note=note, actor_id=actor_id)
            result = order_to_dict(order)

        return result

    @storage_retry()
    def cancel_order(self, order_id: int, user_id: int, reason: str | None = None) -> Dict[str, Any]:
        """Use Case: anulowanie przez wlasciciela zamowienia."""
        with self._unit_of_work() as uow:
            order = self.repo.get_order_for_update(order_id)
            if order is None or order.user_id != user_id:
                raise NotFoundError(f"Order {order_id} not found")

            self.state_machine.apply(
                uow,
                order,
                OrderStatus.CANCELLED,
                note=reason or "Cancelled by customer",
                actor_id=user_id,
            )
            result = order_to_dict(order)

        return result

    def delete_order(self, order_id: int) -> None:
        """Soft delete, tylko dla zamowien w statusie koncowym."""
        with self._unit_of_work() as uow:
            order = self.repo.get_order_for_update(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if OrderStatus(order.status) not in TERMINAL_ORDER_STATUSES:
                raise InvalidTransitionError(
                    f"Order {order.order_number} in status {order.status} cannot be deleted"
                )
            order.deleted_at = datetime.now(timezone.utc)
            uow.invalidate(order_key(order.id))

        logger.info(f"Order {order_id} soft-deleted")

    def expire_unpaid_orders(self, now: datetime | None = None) -> list[int]:
        """
        Anuluje zamowienia pending, ktorych platnosc wygasla.
        Kazde zamowienie w osobnej transakcji - jeden blad nie blokuje reszty.
        """
        now = now or datetime.now(timezone.utc)
        candidates = self.repo.find_expired_unpaid(now)
        self.db.rollback()

        expired = []
        for order_id in candidates:
            try:
                with self._unit_of_work() as uow:
                    order = self.repo.get_order_for_update(order_id)
                    # ktos mogl w miedzyczasie oplacic albo anulowac
                    if order is None or order.status != OrderStatus.PENDING.value:
                        continue
                    if order.payment_status != PaymentStatus.PENDING.value:
                        continue
                    self.state_machine.apply(
                        uow,
                        order,
                        OrderStatus.CANCELLED,
                        note="Payment expired",
                        actor_id=None,
                    )
                expired.append(order_id)
            except OrderFlowError as e:
                logger.error(f"Could not expire order {order_id}: {e}")

        logger.info(f"Expired {len(expired)} of {len(candidates)} unpaid orders")
        return expired

    # =====================================================
    # QUERIES
    # =====================================================
    def get_order(self, order_id: int, user_id: int) -> Dict[str, Any]:
        cached = self.cache.get(order_key(order_id)) if self.cache is not None else None
        if cached is not None and cached.get("user_id") == user_id:
            return OrderOut.model_validate(cached).model_dump()

        order = self.repo.get_order(order_id, user_id=user_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        data = order_to_dict(order)
        if self.cache is not None:
            self.cache.set(order_key(order_id), data, ORDER_CACHE_TTL_SECONDS)
            # zmiana zacommitowana miedzy odczytem a set() juz skasowala klucz, nasz wpis bylby nieaktualny
            if self.repo.get_updated_at(order_id) != data["updated_at"]:
                self.cache.delete(order_key(order_id))
        return data

    def list_orders(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        check_paging(page, limit)
        orders, total = self.repo.list_orders(page, limit, user_id=user_id)
        return {
            "items": [order_to_dict(o, with_items=False) for o in orders],
            "pagination": pagination(page, limit, total),
        }

    def list_all_orders(self, page: int = 1, limit: int = 10, status: str | None = None) -> Dict[str, Any]:
        check_paging(page, limit)
        if status:
            status = OrderStatus.parse(status).value
        orders, total = self.repo.list_orders(page, limit, status=status)
        return {
            "items": [order_to_dict(o, with_items=False) for o in orders],
            "pagination": pagination(page, limit, total),
        }

    def get_order_history(self, order_id: int, user_id: int | None = None) -> list[Dict[str, Any]]:
        order = self.repo.get_order(order_id, user_id=user_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return [history_to_dict(h) for h in self.repo.get_history(order_id)]
