"""
Pytest fixtures for nursery backend tests.

Provides an in-memory database per test, a recording payment gateway and
mail sender, account fixtures for every role, and catalog fixtures.
"""

import pytest

from nursery import create_app
from nursery.extensions import db
from nursery.models import User, Category
from nursery.services import auth_service, catalog_service, session_service, token_service


TEST_PASSWORD = "Password123!"


class FakeGateway:
    """Stands in for RazorpayClient; records every call."""

    def __init__(self):
        self.created = []
        self.refunds = []
        self.fail_refunds = False

    def create_order(self, *, amount_cents, currency, receipt, notes=None):
        gateway_order = {
            "id": f"order_test_{len(self.created) + 1}",
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        self.created.append(gateway_order)
        return gateway_order

    def refund(self, payment_id, *, amount_cents=None, notes=None):
        from nursery.services.payment_service import PaymentGatewayError

        if self.fail_refunds:
            raise PaymentGatewayError("Gateway unavailable")
        refund = {"id": f"rfnd_test_{len(self.refunds) + 1}", "payment_id": payment_id, "amount": amount_cents}
        self.refunds.append(refund)
        return refund


class RecordingMailSender:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, recipient, subject, body_html):
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body_html})


@pytest.fixture(scope='function')
def app(monkeypatch):
    """Create application for testing."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)

    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret-key',
        'ACCESS_TOKEN_SECRET': 'test-access-secret',
        'REFRESH_TOKEN_SECRET': 'test-refresh-secret',
        'RAZORPAY_KEY_ID': 'rzp_test_key',
        'RAZORPAY_KEY_SECRET': 'test-key-secret',
        'RAZORPAY_WEBHOOK_SECRET': 'test-webhook-secret',
        'NOTIFICATIONS_INLINE_DISPATCH': False,
    })
    app.extensions["payment_gateway"] = FakeGateway()
    app.extensions["mail_sender"] = RecordingMailSender()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture(scope='function')
def mailer(app):
    return app.extensions["mail_sender"]


def make_user(email, role="customer", password=TEST_PASSWORD, is_active=True):
    user = User(
        email=email,
        password_hash=auth_service.hash_password(password),
        role=role,
        is_active=is_active,
        is_verified=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def get_auth_token(user):
    """Open the user's session directly and return an access token."""
    session_id = session_service.open_session(user.id)
    db.session.commit()
    return token_service.issue_token_pair(user, session_id)["accessToken"]


def auth_headers(token):
    """Create authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer(app):
    return make_user("customer@example.com")


@pytest.fixture(scope='function')
def other_customer(app):
    return make_user("other@example.com")


@pytest.fixture(scope='function')
def inventory_admin(app):
    return make_user("inventory@example.com", "inventory_admin")


@pytest.fixture(scope='function')
def order_admin(app):
    return make_user("orders@example.com", "order_admin")


@pytest.fixture(scope='function')
def support_admin(app):
    return make_user("support@example.com", "support_admin")


@pytest.fixture(scope='function')
def content_admin(app):
    return make_user("content@example.com", "content_admin")


@pytest.fixture(scope='function')
def super_admin(app):
    return make_user("root@example.com", "super_admin")


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(get_auth_token(customer))


@pytest.fixture(scope='function')
def inventory_headers(inventory_admin):
    return auth_headers(get_auth_token(inventory_admin))


@pytest.fixture(scope='function')
def order_admin_headers(order_admin):
    return auth_headers(get_auth_token(order_admin))


@pytest.fixture(scope='function')
def support_headers(support_admin):
    return auth_headers(get_auth_token(support_admin))


@pytest.fixture(scope='function')
def content_headers(content_admin):
    return auth_headers(get_auth_token(content_admin))


@pytest.fixture(scope='function')
def super_headers(super_admin):
    return auth_headers(get_auth_token(super_admin))


@pytest.fixture(scope='function')
def category(app):
    category = Category(name="Indoor Plants", slug="indoor-plants", is_active=True, display_order=0)
    db.session.add(category)
    db.session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(category):
    """Factory: make_product(stock=10, price_cents=50000, ...)."""
    counter = {"n": 0}

    def _make(name=None, stock=10, price_cents=50000, min_threshold=2, **extra):
        counter["n"] += 1
        payload = {
            "sku": f"SKU-{counter['n']:04d}",
            "name": name or f"Plant {counter['n']}",
            "price_cents": price_cents,
            "category_id": category.id,
            "stock_quantity": stock,
            "min_stock_threshold": min_threshold,
            **extra,
        }
        return catalog_service.create_product(payload)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(name="Monstera Deliciosa", stock=10, price_cents=50000)
