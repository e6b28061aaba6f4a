"""
Pytest fixtures for comanda backend tests.

Provides the application on a temporary SQLite file (so concurrency tests
can use several connections), tenant isolation fixtures, a small catalog
with recipes, and login helpers for the test client.
"""

from decimal import Decimal

import pytest

from comanda import create_app
from comanda.extensions import db
from comanda.models import (
    DiningTable,
    Ingredient,
    ModifierGroup,
    ModifierOption,
    Product,
    ProductIngredient,
    Supplier,
    Tenant,
    User,
)
from comanda.services.auth_service import hash_password
from comanda.services import shift_service


PASSWORD = "Password123!"
# Cheapest cost bcrypt accepts; production uses 12
TEST_BCRYPT_ROUNDS = 4


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "comanda-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'IDEMPOTENCY_BACKEND': 'memory',
        'BUSINESS_TIMEZONE': 'UTC',
        'BUSINESS_DAY_CUTOFF_HOUR': 6,
        'OVERPAYMENT_TOLERANCE': 0.10,
        'REQUIRE_OPEN_SHIFT_FOR_CASH': False,
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


# =============================================================================
# TENANTS AND USERS
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first restaurant)."""
    tenant = Tenant(name="La Esquina", code="ESQUINA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second restaurant)."""
    tenant = Tenant(name="El Puerto", code="PUERTO", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


def make_user(db_session, tenant, username: str, role: str) -> User:
    user = User(
        tenant_id=tenant.id,
        username=username,
        name=username.title(),
        password_hash=hash_password(PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager_a(db_session, tenant_a):
    return make_user(db_session, tenant_a, "marta", "MANAGER")


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a):
    return make_user(db_session, tenant_a, "carlos", "CASHIER")


@pytest.fixture(scope='function')
def waiter_a(db_session, tenant_a):
    return make_user(db_session, tenant_a, "walter", "WAITER")


@pytest.fixture(scope='function')
def manager_b(db_session, tenant_b):
    return make_user(db_session, tenant_b, "beatriz", "MANAGER")


# =============================================================================
# CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def cheese(db_session, tenant_a):
    ingredient = Ingredient(
        tenant_id=tenant_a.id,
        name="Cheese",
        unit="kg",
        stock=Decimal("10.000"),
        min_stock=Decimal("1.000"),
        cost_cents=900,
    )
    db_session.add(ingredient)
    db_session.commit()
    return ingredient


@pytest.fixture(scope='function')
def onion(db_session, tenant_a):
    ingredient = Ingredient(
        tenant_id=tenant_a.id,
        name="Onion",
        unit="kg",
        stock=Decimal("5.000"),
        min_stock=Decimal("0.500"),
    )
    db_session.add(ingredient)
    db_session.commit()
    return ingredient


@pytest.fixture(scope='function')
def pizza(db_session, tenant_a, cheese, onion):
    """$10 stockable product: 1 kg cheese and 0.1 kg onion per unit."""
    product = Product(tenant_id=tenant_a.id, name="Pizza", price_cents=1000, is_stockable=True)
    product.ingredients.append(ProductIngredient(ingredient_id=cheese.id, quantity=Decimal("1.000")))
    product.ingredients.append(ProductIngredient(ingredient_id=onion.id, quantity=Decimal("0.100")))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def soda(db_session, tenant_a):
    """$5 product without recipe."""
    product = Product(tenant_id=tenant_a.id, name="Soda", price_cents=500, is_stockable=False)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def extra_cheese(db_session, tenant_a, pizza, cheese):
    """$1.50 modifier on Pizza that consumes 0.2 kg of cheese."""
    group = ModifierGroup(tenant_id=tenant_a.id, name="Extras")
    db_session.add(group)
    db_session.flush()
    option = ModifierOption(
        tenant_id=tenant_a.id,
        modifier_group_id=group.id,
        name="Extra cheese",
        price_cents=150,
        ingredient_id=cheese.id,
        quantity_used=Decimal("0.200"),
    )
    db_session.add(option)
    pizza.modifier_groups.append(group)
    db_session.commit()
    return option


@pytest.fixture(scope='function')
def table_1(db_session, tenant_a):
    table = DiningTable(tenant_id=tenant_a.id, name="Mesa 1")
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def table_2(db_session, tenant_a):
    table = DiningTable(tenant_id=tenant_a.id, name="Mesa 2")
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def supplier_a(db_session, tenant_a):
    supplier = Supplier(tenant_id=tenant_a.id, name="Lacteos del Sur")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    product = Product(tenant_id=tenant_b.id, name="Empanada", price_cents=300)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cashier_shift(db_session, tenant_a, cashier_a):
    """Open shift for cashier_a with a 100.00 float."""
    return shift_service.open_shift(tenant_a.id, cashier_a.id, 10000)


# =============================================================================
# HTTP HELPERS
# =============================================================================

def get_auth_token(client, tenant_code: str, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'tenant_code': tenant_code,
        'username': username,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def manager_headers(client, tenant_a, manager_a):
    return auth_headers(get_auth_token(client, tenant_a.code, manager_a.username))


@pytest.fixture(scope='function')
def cashier_headers(client, tenant_a, cashier_a):
    return auth_headers(get_auth_token(client, tenant_a.code, cashier_a.username))


@pytest.fixture(scope='function')
def waiter_headers(client, tenant_a, waiter_a):
    return auth_headers(get_auth_token(client, tenant_a.code, waiter_a.username))


@pytest.fixture(scope='function')
def manager_b_headers(client, tenant_b, manager_b):
    return auth_headers(get_auth_token(client, tenant_b.code, manager_b.username))
