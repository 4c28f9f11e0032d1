"""
Pytest fixtures for stockbook backend tests.

Provides an in-memory database, a per-test clean slate, the test client,
and small factories for products, customers and invoices.
"""

from decimal import Decimal

import pytest

from stockbook import create_app
from stockbook.extensions import db
from stockbook.services import customers_service, invoice_service, products_service


ACCESS_KEY = "test-access-key"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ACCESS_KEY': ACCESS_KEY,
        'TELEGRAM_BOT_TOKEN': '',
        'TELEGRAM_CHAT_ID': '',
        'INVOICE_WORKFLOW_MODE': 'atomic',
        'INVOICE_SEQUENCE_ENABLED': True,
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
def make_product(db_session):
    """Factory: make_product(sku="A", stock=10, unit_price=100, tax_rate=0)."""
    counter = {"n": 0}

    def _make(sku=None, *, name=None, stock=0, unit_price="100.00", tax_rate="0", min_stock="0"):
        counter["n"] += 1
        sku = sku or f"SKU-{counter['n']:03d}"
        return products_service.create_product(patch={
            "sku": sku,
            "name": name or f"Product {sku}",
            "unit_price": Decimal(str(unit_price)),
            "tax_rate": Decimal(str(tax_rate)),
            "opening_stock": Decimal(str(stock)),
            "min_stock": Decimal(str(min_stock)),
        })

    return _make


@pytest.fixture(scope='function')
def product_a(make_product):
    """Product A with 10 units in stock."""
    return make_product("PROD-A", name="Product A", stock=10, unit_price="118.00", tax_rate="18")


@pytest.fixture(scope='function')
def customer(db_session):
    return customers_service.create_customer(patch={"name": "Asha Traders", "email": "asha@example.com"})


@pytest.fixture(scope='function')
def make_invoice(db_session):
    """Factory: make_invoice([(product, qty), ...], guest_name="Walk-in")."""

    def _make(lines, **header):
        if "customer_id" not in header:
            header.setdefault("guest_name", "Walk-in")
        items = []
        for product, qty in lines:
            items.append({
                "product_id": product.id,
                "quantity": qty,
                "unit_price": product.unit_price,
                "tax_rate": product.tax_rate,
            })
        return invoice_service.create_invoice(patch={**header, "items": items}, notify=False)

    return _make


def auth_headers(token: str = ACCESS_KEY) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def headers():
    return auth_headers()
