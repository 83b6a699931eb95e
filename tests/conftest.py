"""
Test Configuration and Fixtures
Shared testing infrastructure for the stock ledger
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STOCK_SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")

from datetime import date
from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

from stock_ledger.app.db import make_engine, create_db_and_tables
from stock_ledger.app.models import Warehouse, Product, Supplier, User
from stock_ledger.app.main import create_app
from stock_ledger.app.security import get_db, get_password_hash, create_access_token
from stock_ledger.app.services.stock_service import StockOperationService

TEST_PASSWORD = "secret-pass-123"
# bcrypt is slow on purpose; hash once per run
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so several threads can share one database"""
    test_engine = make_engine(f"sqlite:///{(tmp_path / 'ledger.db').as_posix()}")
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    """Create a fresh database session for each test"""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db: Session):
    """
    Two warehouses, two products, a supplier, an admin and one clerk per
    warehouse. ``seed.ids`` holds plain ids for tests that go through HTTP.
    """
    bkk = Warehouse(name="Bangkok Central", code="BKK")
    cnx = Warehouse(name="Chiang Mai", code="CNX")
    milk = Product(product_code="P-MILK", name="UHT Milk 1L", category="Dairy")
    rice = Product(product_code="P-RICE", name="Jasmine Rice 5kg", category="Dry")
    supplier = Supplier(name="Dairy Co", contact_name="Somchai", phone="020000000")
    db.add_all([bkk, cnx, milk, rice, supplier])
    db.flush()

    admin = User(full_name="Admin", email="admin@example.com", username="admin",
                 password_hash=TEST_PASSWORD_HASH, role="admin")
    clerk_bkk = User(full_name="Clerk BKK", email="bkk@example.com", username="clerk_bkk",
                     password_hash=TEST_PASSWORD_HASH, role="user", warehouse_id=bkk.id)
    clerk_cnx = User(full_name="Clerk CNX", email="cnx@example.com", username="clerk_cnx",
                     password_hash=TEST_PASSWORD_HASH, role="user", warehouse_id=cnx.id)
    db.add_all([admin, clerk_bkk, clerk_cnx])
    db.flush()

    ids = SimpleNamespace(
        bkk=bkk.id, cnx=cnx.id, milk=milk.id, rice=rice.id, supplier=supplier.id,
        admin=admin.id, clerk_bkk=clerk_bkk.id, clerk_cnx=clerk_cnx.id,
    )
    db.commit()

    return SimpleNamespace(
        bkk=bkk, cnx=cnx, milk=milk, rice=rice, supplier=supplier,
        admin=admin, clerk_bkk=clerk_bkk, clerk_cnx=clerk_cnx, ids=ids,
    )


@pytest.fixture
def receive_lot(db: Session, seed):
    """Receive one lot through the engine and return it"""
    def _receive(lot_code, quantity, exp_date=date(2030, 1, 1), warehouse=None, product=None, user=None):
        warehouse = warehouse or seed.bkk
        product = product or seed.milk
        transactions = StockOperationService.receive(db, user or seed.admin, [{
            "lot_code": lot_code,
            "product_id": product.id,
            "warehouse_id": warehouse.id,
            "exp_date": exp_date,
            "quantity": quantity,
            "supplier_id": seed.supplier.id,
        }])
        return transactions[0].lot
    return _receive


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def app(session_factory):
    """Application wired to the test database"""
    test_app = create_app(create_tables=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    test_app.dependency_overrides[get_db] = override_get_db
    yield test_app
    test_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Bearer headers for a username"""
    def _headers(username):
        token = create_access_token({"sub": username})
        return {"Authorization": f"Bearer {token}"}
    return _headers
