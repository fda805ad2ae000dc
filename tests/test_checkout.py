from decimal import Decimal

import pytest

from orderflow.data.models.cart_line import CartLineModel
from orderflow.data.models.order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from orderflow.data.models.payment import PaymentModel
from orderflow.data.models.product import ProductModel
from orderflow.domain.errors import (
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    ProductUnavailableError,
    StaleQuoteError,
    ValidationError,
)
from orderflow.services.order_service import generate_order_number
from orderflow.services.shipping import ShippingAddress


def stock_of(db, product_id):
    return db.get(ProductModel, product_id).stock


def test_checkout_scenario(db, placed_order, publisher):
    order = placed_order["order"]

    assert order["subtotal"] == Decimal("25.00")
    assert order["shipping_cost"] == Decimal("2.00")
    assert order["total_amount"] == Decimal("27.00")
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"

    assert stock_of(db, placed_order["product_a"]) == 3
    assert stock_of(db, placed_order["product_b"]) == 0

    payment = db.query(PaymentModel).filter_by(order_id=order["id"]).one()
    assert payment.amount == Decimal("27.00")
    assert payment.status == "pending"
    assert payment.external_reference is None
    assert order["payment_id"] == payment.id

    assert publisher.kinds == ["order.created"]
    assert publisher.events[0].total_amount == Decimal("27.00")


def test_checkout_snapshots_items_and_history(db, placed_order):
    order = placed_order["order"]

    items = db.query(OrderItemModel).filter_by(order_id=order["id"]).order_by(OrderItemModel.product_id).all()
    assert [(i.quantity, i.unit_price, i.subtotal) for i in items] == [
        (2, Decimal("10.00"), Decimal("20.00")),
        (1, Decimal("5.00"), Decimal("5.00")),
    ]

    history = db.query(OrderStatusHistoryModel).filter_by(order_id=order["id"]).all()
    assert len(history) == 1
    assert history[0].from_status is None
    assert history[0].to_status == "pending"
    assert history[0].actor_id == 1


def test_checkout_consumes_cart(db, placed_order):
    assert db.query(CartLineModel).filter_by(user_id=1).count() == 0


def test_price_is_locked_at_checkout(db, placed_order):
    product = db.get(ProductModel, placed_order["product_a"])
    product.price = Decimal("99.00")
    db.commit()

    order = db.get(OrderModel, placed_order["order"]["id"])
    assert order.total_amount == Decimal("27.00")
    assert order.items[0].unit_price == Decimal("10.00")


def test_second_checkout_of_sold_out_product_fails(db, placed_order, cart_service, order_service, address, publisher):
    cart_service.add_to_cart(2, placed_order["product_a"], 1)
    cart_service.add_to_cart(2, placed_order["product_b"], 1)

    with pytest.raises(InsufficientStockError):
        order_service.checkout(2, address)

    assert stock_of(db, placed_order["product_a"]) == 3
    assert stock_of(db, placed_order["product_b"]) == 0
    assert db.query(OrderModel).count() == 1
    assert db.query(CartLineModel).filter_by(user_id=2).count() == 2
    assert publisher.kinds == ["order.created"]


def test_failed_stock_decrement_rolls_back_everything(
    db, make_product, cart_service, order_service, address, publisher, mocker
):
    a = make_product("10.00", 5, name="A")
    b = make_product("5.00", 5, name="B")
    cart_service.add_to_cart(1, a, 2)
    cart_service.add_to_cart(1, b, 1)

    real_adjust = order_service.stock.adjust_stock

    # B sells out between the stock check and the decrement
    def adjust(product_id, delta, uow=None):
        if product_id == b:
            raise InsufficientStockError("sold out")
        return real_adjust(product_id, delta, uow=uow)

    mocker.patch.object(order_service.stock, "adjust_stock", side_effect=adjust)

    with pytest.raises(InsufficientStockError):
        order_service.checkout(1, address)

    assert stock_of(db, a) == 5
    assert stock_of(db, b) == 5
    assert db.query(OrderModel).count() == 0
    assert db.query(OrderItemModel).count() == 0
    assert db.query(OrderStatusHistoryModel).count() == 0
    assert db.query(PaymentModel).count() == 0
    assert db.query(CartLineModel).filter_by(user_id=1).count() == 2
    assert publisher.events == []


def test_checkout_empty_cart(order_service, address):
    with pytest.raises(EmptyCartError):
        order_service.checkout(1, address)


def test_checkout_inactive_product(db, make_product, cart_service, order_service, address):
    product_id = make_product("10.00", 5, is_active=False)
    cart_service.add_to_cart(1, product_id, 1)

    with pytest.raises(ProductUnavailableError):
        order_service.checkout(1, address)

    assert stock_of(db, product_id) == 5


def test_checkout_requires_address(make_product, cart_service, order_service):
    cart_service.add_to_cart(1, make_product("10.00", 5), 1)

    with pytest.raises(ValidationError):
        order_service.checkout(1, ShippingAddress(address=""))


def test_checkout_selected_lines_only(db, make_product, cart_service, order_service, address):
    a = make_product("10.00", 5)
    b = make_product("5.00", 5)
    line_a = cart_service.add_to_cart(1, a, 1)
    cart_service.add_to_cart(1, b, 1)

    order = order_service.checkout(1, address, line_ids=[line_a["id"]])

    assert order["subtotal"] == Decimal("10.00")
    assert stock_of(db, a) == 4
    assert stock_of(db, b) == 5
    remaining = cart_service.get_cart(1)["items"]
    assert [i["product_id"] for i in remaining] == [b]


def test_checkout_foreign_line_id(make_product, cart_service, order_service, address):
    a = make_product("10.00", 5)
    own = cart_service.add_to_cart(1, a, 1)
    foreign = cart_service.add_to_cart(2, a, 1)

    with pytest.raises(NotFoundError):
        order_service.checkout(1, address, line_ids=[own["id"], foreign["id"]])


def test_checkout_uses_current_price(db, make_product, cart_service, order_service, address):
    product_id = make_product("10.00", 5)
    cart_service.add_to_cart(1, product_id, 1)

    product = db.get(ProductModel, product_id)
    product.price = Decimal("11.00")
    db.commit()

    order = order_service.checkout(1, address)

    assert order["subtotal"] == Decimal("11.00")


def test_checkout_passes_lines_to_shipping_policy(make_product, cart_service, db, publisher, cache, address, mocker):
    from orderflow.services.order_service import OrderService

    policy = mocker.Mock()
    policy.quote.return_value = Decimal("4.5")
    service = OrderService(db, shipping=policy, publisher=publisher, cache=cache)
    product_id = make_product("10.00", 5)
    cart_service.add_to_cart(1, product_id, 3)

    order = service.checkout(1, address)

    assert order["shipping_cost"] == Decimal("4.50")
    assert order["total_amount"] == Decimal("34.50")
    args = policy.quote.call_args.args
    assert args[0] == address
    assert [(l.product_id, l.quantity) for l in args[1]] == [(product_id, 3)]
    assert args[2] == Decimal("30.00")


def test_order_numbers_are_unique_and_sortable(placed_order, make_product, cart_service, order_service, address):
    cart_service.add_to_cart(1, make_product("1.00", 5), 1)
    second = order_service.checkout(1, address)

    first_number = placed_order["order"]["order_number"]
    assert first_number != second["order_number"]
    assert first_number.startswith("ORD-")
    assert first_number[:18] <= second["order_number"][:18]


def test_generate_order_number_format():
    number = generate_order_number()
    prefix, stamp, suffix = number.split("-")

    assert prefix == "ORD"
    assert len(stamp) == 14 and stamp.isdigit()
    assert len(suffix) == 8


@pytest.fixture
def quoting_service(db, publisher, cache, mocker):
    from orderflow.services.order_service import OrderService

    policy = mocker.Mock()
    policy.quote.return_value = Decimal("2.00")
    return OrderService(db, shipping=policy, publisher=publisher, cache=cache)


def test_shipping_is_quoted_outside_any_transaction(db, make_product, cart_service, quoting_service, address):
    product_id = make_product("10.00", 5)
    cart_service.add_to_cart(1, product_id, 1)
    open_transactions = []

    def quote(*args):
        open_transactions.append(db.in_transaction())
        return Decimal("2.00")

    quoting_service.shipping.quote.side_effect = quote

    order = quoting_service.checkout(1, address)

    assert order["total_amount"] == Decimal("12.00")
    assert open_transactions == [False]


def test_price_change_during_quote_is_quoted_again(db, make_product, cart_service, quoting_service, address):
    product_id = make_product("10.00", 5)
    cart_service.add_to_cart(1, product_id, 2)
    subtotals = []

    def quote(address, lines, subtotal):
        subtotals.append(subtotal)
        if len(subtotals) == 1:
            # cennik zmienia sie w trakcie wyceny wysylki
            db.get(ProductModel, product_id).price = Decimal("12.00")
            db.commit()
        return Decimal("2.00")

    quoting_service.shipping.quote.side_effect = quote

    order = quoting_service.checkout(1, address)

    assert subtotals == [Decimal("20.00"), Decimal("24.00")]
    assert order["subtotal"] == Decimal("24.00")
    assert order["total_amount"] == Decimal("26.00")
    assert stock_of(db, product_id) == 3


def test_cart_that_keeps_changing_gives_up(db, make_product, cart_service, quoting_service, address, publisher):
    product_id = make_product("10.00", 5)
    cart_service.add_to_cart(1, product_id, 1)

    def quote(address, lines, subtotal):
        cart_service.add_to_cart(1, product_id, 1)
        return Decimal("2.00")

    quoting_service.shipping.quote.side_effect = quote

    with pytest.raises(StaleQuoteError):
        quoting_service.checkout(1, address)

    assert quoting_service.shipping.quote.call_count == 2
    assert stock_of(db, product_id) == 5
    assert db.query(OrderModel).count() == 0
    assert db.query(CartLineModel).filter_by(user_id=1).one().quantity == 3
    assert publisher.events == []
