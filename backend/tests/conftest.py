"""
Pytest fixtures for pharmacy backend tests.

Every test gets its own app with file-backed SQLite databases under tmp_path:
a primary plus cloud and local secondaries. Best-effort background work runs
inline so scan logs and audit rows are visible as soon as the call returns.
"""

import pytest

from pharmacy import create_app
from pharmacy.extensions import db
from pharmacy.models import Customer, Product, User


TEST_ENCRYPTION_KEY = "test-encryption-key-0123456789ab"


def make_config(tmp_path, **overrides):
    config = {
        "TESTING": True,
        "SECRET_KEY": "test",
        "ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'primary.sqlite3'}",
        "CLOUD_DATABASE_URL": f"sqlite:///{tmp_path / 'cloud.sqlite3'}",
        "LOCAL_DATABASE_URL": f"sqlite:///{tmp_path / 'local.sqlite3'}",
        "READ_REPLICA_URL": None,
        "READ_REPLICA_ENABLED": False,
        "DB_PROBE_TIMEOUT_SECONDS": 2,
        "DB_AUTO_CREATE_SCHEMA": True,
        "BACKGROUND_TASKS_INLINE": True,
        "SYNC_ENABLED": True,
        "SYNC_AUTOSTART": False,
    }
    config.update(overrides)
    return config


@pytest.fixture
def app(tmp_path):
    """Create application for testing."""
    app = create_app(make_config(tmp_path))
    with app.app_context():
        yield app
        db.session.remove()
        app.extensions["connection_router"].close()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def router(app):
    return app.extensions["connection_router"]


@pytest.fixture
def cipher(app):
    return app.extensions["field_cipher"]


@pytest.fixture
def pharmacist(app):
    user = User(
        username="pharm1",
        email="pharm1@test.local",
        password_hash="x",
        first_name="Paula",
        last_name="Reyes",
        role="pharmacist",
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app):
    customer = Customer(
        first_name="Juan",
        last_name="Dela Cruz",
        email="juan@test.local",
        phone="09170000000",
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def _product(sku, name, price_cents, stock, prescription_required=False):
    product = Product(
        name=name,
        sku=sku,
        price_cents=price_cents,
        stock=stock,
        prescription_required=prescription_required,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture
def product_a(app):
    return _product("SKU-A", "Paracetamol 500mg", 1000, 10)


@pytest.fixture
def product_b(app):
    return _product("SKU-B", "Vitamin C 1000mg", 2500, 5)


@pytest.fixture
def product_rx(app):
    return _product("SKU-RX", "Amoxicillin 500mg", 1500, 20, prescription_required=True)


@pytest.fixture
def actor_headers(pharmacist):
    return {"X-Actor-Id": pharmacist.id, "X-Actor-Role": "pharmacist"}


@pytest.fixture
def manager_headers(pharmacist):
    return {"X-Actor-Id": pharmacist.id, "X-Actor-Role": "manager"}
