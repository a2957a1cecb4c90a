"""
Pytest fixtures for the order engine backend tests.

Provides test database setup, customers/admin accounts, catalog products,
a scripted payment gateway and auth helpers.
"""

import itertools

import pytest
from app import create_app
from app.extensions import db
from app.models import Cart, CartItem, Product, User
from app.models.auth import ROLE_ADMIN, ROLE_USER
from app.services.auth_service import hash_password
from app.services.order_builder import CheckoutRequest
from app.services.order_errors import PaymentGatewayError
from app.services.payment_gateway import PaymentIntent
from app.services.session_service import create_session


TEST_PASSWORD = "Password123!"


class FakeGateway:
    """
    In-process stand-in for the card gateway.

    Intents are created as "requires_payment_method"; tests flip them with
    succeed()/set_amount()/set_metadata(). fail_create / fail_retrieve simulate
    outages. before_create runs once, ahead of the next intent creation.
    """

    def __init__(self):
        self.intents = {}
        self.fail_create = False
        self.fail_retrieve = False
        self.create_calls = 0
        self.before_create = None
        self._ids = itertools.count(1)

    def create_payment_intent(self, amount_cents, metadata):
        self.create_calls += 1
        if self.fail_create:
            raise PaymentGatewayError("Payment gateway unreachable")
        if self.before_create is not None:
            hook, self.before_create = self.before_create, None
            hook()
        reference = f"pi_test_{next(self._ids)}"
        intent = PaymentIntent(
            reference=reference,
            status="requires_payment_method",
            amount_cents=amount_cents,
            client_secret=f"{reference}_secret",
            currency="vnd",
            metadata={k: str(v) for k, v in metadata.items()},
        )
        self.intents[reference] = intent
        return intent

    def retrieve_payment_status(self, reference):
        if self.fail_retrieve:
            raise PaymentGatewayError("Payment gateway unreachable")
        if reference not in self.intents:
            raise PaymentGatewayError("Payment gateway rejected the request", details={"status_code": 404})
        return self.intents[reference]

    def _replace(self, reference, **changes):
        current = self.intents[reference]
        values = {
            "reference": current.reference,
            "status": current.status,
            "amount_cents": current.amount_cents,
            "client_secret": current.client_secret,
            "currency": current.currency,
            "metadata": current.metadata,
        }
        values.update(changes)
        self.intents[reference] = PaymentIntent(**values)

    def succeed(self, reference):
        self._replace(reference, status="succeeded")

    def set_amount(self, reference, amount_cents):
        self._replace(reference, amount_cents=amount_cents)

    def set_metadata(self, reference, metadata):
        self._replace(reference, metadata=metadata)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # No key: the real gateway refuses before any network call
        'PAYMENT_GATEWAY_SECRET_KEY': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(app):
    """Install a fresh scripted gateway for the test."""
    fake = FakeGateway()
    previous = app.extensions["payment_gateway"]
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = previous


def make_user(db_session, email, name, role=ROLE_USER):
    # Low bcrypt cost keeps the suite fast
    user = User(
        email=email,
        name=name,
        phone="0900000000",
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_product(db_session, name, price_cents, quantity, sold=0):
    product = Product(name=name, price_cents=price_cents, quantity=quantity, sold=sold, image=f"{name}.jpg")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    return make_user(db_session, "customer@shop.test", "Customer One")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return make_user(db_session, "other@shop.test", "Customer Two")


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, "admin@shop.test", "Shop Admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def product_a(db_session):
    """Product A: 5 in stock at 100,000."""
    return make_product(db_session, "Product A", 100_000, 5)


@pytest.fixture(scope='function')
def product_b(db_session):
    """Product B: 2 in stock at 50,000."""
    return make_product(db_session, "Product B", 50_000, 2)


def fill_cart(db_session, user, *products):
    cart = Cart(user_id=user.id)
    db_session.add(cart)
    db_session.flush()
    for product in products:
        db_session.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=1))
    db_session.commit()
    return cart


ADDRESS = {
    "full_name": "Nguyen Van A",
    "phone": "0901234567",
    "address": "12 Le Loi",
    "city": "Ho Chi Minh",
    "district": "District 1",
    "ward": "Ben Nghe",
}


def checkout_payload(lines, payment_method="cod", total=None):
    """lines: list of (product, quantity) tuples."""
    items = [
        {"product_id": product.id, "quantity": quantity, "price": product.price_cents}
        for product, quantity in lines
    ]
    if total is None:
        total = sum(product.price_cents * quantity for product, quantity in lines)
    return {
        "items": items,
        "delivery_address": dict(ADDRESS),
        "payment_method": payment_method,
        "total_amount": total,
    }


def checkout_request(user, lines, payment_method="cod", total=None, idempotency_key=None):
    return CheckoutRequest.from_payload(
        user.id,
        checkout_payload(lines, payment_method=payment_method, total=total),
        idempotency_key=idempotency_key,
    )


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    _session, token = create_session(customer.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def other_customer_headers(other_customer):
    _session, token = create_session(other_customer.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin):
    _session, token = create_session(admin.id)
    return auth_headers(token)
