"""
Pytest fixtures for storefront backend tests.

Provides test database setup, factories for catalog/voucher/order rows,
and test client helpers.
"""

from datetime import timedelta

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import Product, Voucher
from storefront.services import order_service
from storefront.services.checkout_service import CheckoutSettings
from storefront.services.payment_service import BankAccount
from storefront.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def settings(app):
    """Checkout settings: 30,000 flat shipping, free from 200,000."""
    return CheckoutSettings(
        shipping_fee=30000,
        free_shipping_threshold=200000,
        bank_account=BankAccount(
            bank_bin="970436",
            bank_name="Vietcombank",
            bank_short_name="VCB",
            account_number="0123456789",
            account_name="MINI MART",
        ),
    )


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("p1", price=50000, stock=10)."""
    def _make(product_id="p1", name=None, price=50000, stock=None, is_active=True):
        product = Product(
            id=product_id,
            name=name or f"Product {product_id}",
            price=price,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_voucher(db_session):
    """Factory: make_voucher("SALE20", type="percentage", value=20, ...)."""
    def _make(code="SALE20", **overrides):
        now = utcnow()
        fields = {
            "code": code,
            "name": code,
            "type": "percentage",
            "value": 20,
            "min_order_value": 0,
            "max_discount": None,
            "total_usage_limit": None,
            "per_user_limit": 1,
            "usage_count": 0,
            "start_date": now - timedelta(days=1),
            "end_date": now + timedelta(days=30),
            "status": "active",
            "source": "promotion",
            "is_public": True,
        }
        fields.update(overrides)
        voucher = Voucher(**fields)
        db_session.add(voucher)
        db_session.commit()
        return voucher
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: a pending order with one line, priced consistently."""
    def _make(unit_price=150000, quantity=1, shipping_fee=30000, discount=0,
              payment_method="bank_transfer", customer_id="user-1"):
        subtotal = unit_price * quantity
        draft = order_service.OrderDraft(
            customer_name="Nguyen Van A",
            customer_phone="0901234567",
            address="12 Le Loi, District 1, HCMC",
            payment_method=payment_method,
            items=[order_service.OrderItemDraft(
                product_id="p1",
                product_name="Product p1",
                unit_price=unit_price,
                quantity=quantity,
                line_total=subtotal,
            )],
            subtotal=subtotal,
            discount=discount,
            shipping_fee=shipping_fee,
            total=subtotal + shipping_fee - discount,
            customer_id=customer_id,
        )
        return order_service.create_order(draft, actor_user_id=customer_id)
    return _make


def identity_headers(user_id: str, role: str = "customer") -> dict:
    """Helper to create the identity headers the gateway forwards."""
    return {"X-User-Id": user_id, "X-User-Role": role}


@pytest.fixture(scope="function")
def customer_headers():
    return identity_headers("user-1")


@pytest.fixture(scope="function")
def other_customer_headers():
    return identity_headers("user-2")


@pytest.fixture(scope="function")
def admin_headers():
    return identity_headers("admin-1", "admin")
