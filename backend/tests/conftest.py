"""
Pytest fixtures for storefront backend tests.

Provides the test app, a per-test clean database, users per role with
bearer headers, and product/order factories.
"""

import json

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Product
from storefront.models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF
from storefront.services import mailer, session_service
from storefront.services.auth_service import create_user
from storefront.services.payment_gateway import SIGNATURE_HEADER, generate_signature_header


TEST_PASSWORD = "Password123!"
WEBHOOK_SECRET = "whsec_test"

ADDRESS = {
    "first_name": "Ayesha",
    "last_name": "Khan",
    "address": "12 Mall Road",
    "city": "Lahore",
    "state": "Punjab",
    "postal_code": "54000",
    "phone": "+923001234567",
    "email": "ayesha@example.com",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MAIL_BACKEND': 'memory',
        'NOTIFICATION_DISPATCH': 'deferred',
        'BCRYPT_ROUNDS': 4,
        'PAYMENT_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'EXPOSE_ERROR_DETAILS': True,
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
        mailer.get_transport().outbox.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(db_session):
    """Messages handed to the memory mail transport."""
    return mailer.get_transport().outbox


def _make_user(email, role, first_name="Test"):
    user = create_user(first_name, role.title(), email, TEST_PASSWORD, role=role)
    _, token = session_service.create_session(user)
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def customer_account(db_session):
    return _make_user("customer@example.com", ROLE_CUSTOMER, first_name="Ayesha")


@pytest.fixture(scope='function')
def customer(customer_account):
    return customer_account[0]


@pytest.fixture(scope='function')
def customer_headers(customer_account):
    return customer_account[1]


@pytest.fixture(scope='function')
def other_customer_headers(db_session):
    return _make_user("other@example.com", ROLE_CUSTOMER, first_name="Bilal")[1]


@pytest.fixture(scope='function')
def staff_account(db_session):
    return _make_user("staff@lardene.local", ROLE_STAFF)


@pytest.fixture(scope='function')
def staff(staff_account):
    return staff_account[0]


@pytest.fixture(scope='function')
def staff_headers(staff_account):
    return staff_account[1]


@pytest.fixture(scope='function')
def admin_account(db_session):
    return _make_user("admin@lardene.local", ROLE_ADMIN)


@pytest.fixture(scope='function')
def admin(admin_account):
    return admin_account[0]


@pytest.fixture(scope='function')
def admin_headers(admin_account):
    return admin_account[1]


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(stock=10, price_cents=450000, ...) -> Product."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "name": f"Leather Wallet {counter['n']}",
            "slug": f"leather-wallet-{counter['n']}",
            "description": "Full-grain leather",
            "price_cents": 450000,
            "category": "Wallets",
            "images": ["/images/wallet.jpg"],
            "colors": ["Brown", "Black"],
            "stock": 10,
            "stock_threshold": 2,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def order_payload():
    """Factory: order_payload((product, quantity), ...) -> valid POST /api/orders body."""
    def _build(*lines, shipping_fee_cents=22900, payment_method="cod", color="Brown"):
        items = [
            {"product_id": product.id, "quantity": quantity, "color": color}
            for product, quantity in lines
        ]
        subtotal = sum(product.price_cents * quantity for product, quantity in lines)
        return {
            "items": items,
            "shipping_address": dict(ADDRESS),
            "payment_method": payment_method,
            "subtotal_cents": subtotal,
            "shipping_fee_cents": shipping_fee_cents,
            "total_cents": subtotal + shipping_fee_cents,
        }

    return _build


@pytest.fixture(scope='function')
def place_order(client, customer_headers, order_payload):
    """Place an order through the API as the default customer; returns the order JSON."""
    def _place(*lines, **kwargs):
        resp = client.post("/api/orders", json=order_payload(*lines, **kwargs), headers=customer_headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["data"]

    return _place


@pytest.fixture(scope='function')
def send_webhook(client):
    """POST a signed gateway event; returns the response."""
    def _send(event_id, event_type, obj, secret=WEBHOOK_SECRET, signature=None, timestamp=None):
        payload = json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()
        header = signature or generate_signature_header(payload, secret, timestamp)
        return client.post(
            "/api/payments/webhook",
            data=payload,
            headers={SIGNATURE_HEADER: header, "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture(scope='function')
def reload(db_session):
    """Re-read a row after a request committed in another session."""
    def _reload(instance):
        db_session.refresh(instance)
        return instance

    return _reload
