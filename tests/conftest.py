import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.data.database import Base
import orderflow.data.models  # noqa: F401
from orderflow.data.models.product import ProductModel
from orderflow.services.cache_service import json_default
from orderflow.services.cart_service import CartService
from orderflow.services.order_service import OrderService
from orderflow.services.payment_service import PaymentService
from orderflow.services.shipping import FlatRateShipping, ShippingAddress

# Setup test database
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeCache:
    """In-memory stand-in for the redis cache, stores JSON like the real one."""

    def __init__(self):
        self.store = {}
        self.deleted = []

    def get(self, key):
        raw = self.store.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key, value, ttl):
        self.store[key] = json.dumps(value, default=json_default)

    def delete(self, *keys):
        self.deleted.extend(keys)
        for key in keys:
            self.store.pop(key, None)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)
        return True

    @property
    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def shipping():
    return FlatRateShipping(Decimal("2.00"))


@pytest.fixture
def address():
    return ShippingAddress(address="Main St 1", city="Springfield", province="IL", postal_code="62701")


@pytest.fixture
def make_product(db):
    def _make(price, stock, name="Product", is_active=True):
        product = ProductModel(name=name, price=Decimal(price), stock=stock, is_active=is_active)
        db.add(product)
        db.commit()
        return product.id

    return _make


@pytest.fixture
def cart_service(db):
    return CartService(db)


@pytest.fixture
def order_service(db, shipping, publisher, cache):
    return OrderService(db, shipping=shipping, publisher=publisher, cache=cache)


@pytest.fixture
def payment_service(db, publisher, cache):
    return PaymentService(db, publisher=publisher, cache=cache)


@pytest.fixture
def placed_order(make_product, cart_service, order_service, address):
    """Order for user 1: product A (10.00 x 2) + product B (5.00 x 1), shipping 2.00."""
    a = make_product("10.00", 5, name="A")
    b = make_product("5.00", 1, name="B")
    cart_service.add_to_cart(1, a, 2)
    cart_service.add_to_cart(1, b, 1)
    order = order_service.checkout(1, address)
    return {"order": order, "product_a": a, "product_b": b}
