"""
Pytest fixtures for BranchPOS backend tests.

Provides test database setup, catalog reference rows, and test client.
"""

import itertools

import pytest

from branchpos import create_app
from branchpos.extensions import db
from branchpos.models import Branch, Supplier, Product, Customer, User
from branchpos.services import purchase_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'LOYALTY_AUTO_AWARD': False,
        'SALE_RETURN_AUTO_APPROVE': False,
        'TRANSACTION_RETRY_BACKOFF': 0,
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
def branch(db_session):
    branch = Branch(name="Main Branch", code="MAIN")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(name="Second Branch", code="SECOND")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(supplier_code="SUP-001", name="Default Supplier")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def user(db_session, branch):
    user = User(branch_id=branch.id, name="Cashier", email="cashier@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(customer_code="CUST-001", name="Regular Customer")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def products(db_session, supplier):
    """Three products; only the first carries a stock alert level."""
    rows = [
        Product(supplier_id=supplier.id, sku="SKU-001", name="Rice 5kg",
                cost_price_cents=1500, sale_price_cents=2000, stock_alert_quantity=3),
        Product(supplier_id=supplier.id, sku="SKU-002", name="Cooking Oil 1L",
                cost_price_cents=800, sale_price_cents=1000),
        Product(supplier_id=supplier.id, sku="SKU-003", name="Tea 400g",
                cost_price_cents=400, sale_price_cents=500),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture(scope='function')
def product(products):
    return products[0]


@pytest.fixture(scope='function')
def receive_stock(supplier):
    """Book stock in through a purchase. lines: [(product_id, quantity), ...]"""
    invoices = itertools.count(1)

    def _receive(branch_id: int, lines):
        return purchase_service.create_purchase(
            supplier_id=supplier.id,
            branch_id=branch_id,
            invoice_no=f"PUR-SEED-{next(invoices)}",
            items=[
                {"product_id": product_id, "quantity": quantity, "unit_cost_cents": 1000}
                for product_id, quantity in lines
            ],
        )

    return _receive


@pytest.fixture(scope='function')
def stocked(receive_stock, branch, products):
    """Branch holds 5 / 10 / 20 units of the three products."""
    receive_stock(branch.id, [
        (products[0].id, 5),
        (products[1].id, 10),
        (products[2].id, 20),
    ])
    return products
