"""
Pytest fixtures for the backoffice backend tests.

Every test gets a fresh in-memory database. Fixtures return ids rather than
ORM instances so they stay valid across the requests a test makes.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Organization, Role, User
from backoffice.services import (
    bank_account_service,
    catalog_service,
    inventory_service,
    location_service,
    payment_method_service,
    register_service,
    role_service,
    safe_box_service,
    session_service,
)
from backoffice.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture()
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "TIENDANUBE_WEBHOOK_SECRET": None,
        "TIENDANUBE_RETRY_BASE_DELAY": 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


# =============================================================================
# TENANCY
# =============================================================================


def create_org(name: str, code: str) -> int:
    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.flush()
    role_service.create_default_roles(org.id)
    payment_method_service.create_default_payment_methods(org.id)
    location_service.create_location(org_id=org.id, name="Casa central", is_main=True)
    db.session.commit()
    return org.id


def create_user(org_id: int, username: str, role_name: str, password_hash: str,
                location_id: int | None = None) -> int:
    role = db.session.query(Role).filter_by(org_id=org_id, name=role_name).first()
    user = User(
        org_id=org_id,
        username=username,
        email=f"{username}@example.com",
        password_hash=password_hash,
        role_id=role.id,
        location_id=location_id,
    )
    db.session.add(user)
    db.session.commit()
    return user.id


def auth_headers(user_id: int) -> dict:
    """Open a session directly; the login flow itself is covered in test_auth."""
    user = db.session.get(User, user_id)
    _, token = session_service.create_session(user)
    db.session.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def org_id(app):
    return create_org("Acme SRL", "ACME")


@pytest.fixture()
def other_org_id(app):
    return create_org("Beta SA", "BETA")


@pytest.fixture()
def main_location_id(org_id):
    return location_service.get_main_location(org_id).id


@pytest.fixture()
def branch_location_id(org_id):
    location = location_service.create_location(org_id=org_id, name="Sucursal Norte")
    db.session.commit()
    return location.id


@pytest.fixture()
def admin_id(org_id, main_location_id, password_hash):
    return create_user(org_id, "admin", "admin", password_hash, main_location_id)


@pytest.fixture()
def cashier_id(org_id, main_location_id, password_hash):
    return create_user(org_id, "cajero", "cashier", password_hash, main_location_id)


@pytest.fixture()
def admin_headers(admin_id):
    return auth_headers(admin_id)


@pytest.fixture()
def cashier_headers(cashier_id):
    return auth_headers(cashier_id)


@pytest.fixture()
def other_admin_headers(other_org_id, password_hash):
    user_id = create_user(other_org_id, "admin-beta", "admin", password_hash)
    return auth_headers(user_id)


# =============================================================================
# CATALOG AND STOCK
# =============================================================================


@pytest.fixture()
def make_product(org_id):
    """make_product("SKU-1", stock={location_id: qty}) -> product id"""
    def _make(sku: str, *, price_cents: int = 1000, cost_cents: int = 600,
              stock: dict | None = None, item_type: str = "product") -> int:
        product = catalog_service.create_product(
            org_id=org_id,
            sku=sku,
            name=f"Producto {sku}",
            price_cents=price_cents,
            cost_cents=cost_cents,
            item_type=item_type,
        )
        for location_id, quantity in (stock or {}).items():
            inventory_service.set_stock(
                org_id=org_id, product_id=product.id, location_id=location_id, quantity=quantity
            )
        db.session.commit()
        return product.id

    return _make


def stock_of(product_id: int, location_id: int) -> int:
    return inventory_service.get_quantity(product_id, location_id)


@pytest.fixture()
def customer_id(org_id):
    customer = catalog_service.create_customer(org_id=org_id, name="Juana Perez", tax_id="27-11111111-3")
    db.session.commit()
    return customer.id


@pytest.fixture()
def supplier_id(org_id):
    supplier = catalog_service.create_supplier(org_id=org_id, name="Distribuidora Sur", tax_id="30-22222222-7")
    db.session.commit()
    return supplier.id


# =============================================================================
# CASH AND TREASURY
# =============================================================================


@pytest.fixture()
def register_id(org_id, main_location_id):
    register = register_service.create_cash_register(org_id=org_id, location_id=main_location_id, name="Caja 1")
    db.session.commit()
    return register.id


@pytest.fixture()
def open_shift_id(org_id, register_id, admin_id):
    """Shift opened by the admin on Caja 1 with $100.00 in the drawer."""
    shift = register_service.open_shift(
        org_id=org_id, register_id=register_id, user_id=admin_id, opening_amount_cents=10000
    )
    db.session.commit()
    return shift.id


@pytest.fixture()
def bank_account_id(org_id):
    account = bank_account_service.create_bank_account(
        org_id=org_id,
        bank_name="Banco Nacion",
        account_name="Cuenta corriente",
        initial_balance_cents=500000,
    )
    db.session.commit()
    return account.id


@pytest.fixture()
def safe_box_id(org_id, main_location_id):
    box = safe_box_service.create_safe_box(
        org_id=org_id, name="Caja fuerte", location_id=main_location_id, initial_balance_cents=20000
    )
    db.session.commit()
    return box.id


@pytest.fixture()
def methods(org_id):
    """Default payment method ids keyed by method type."""
    return {
        m.method_type: m.id
        for m in payment_method_service.list_payment_methods(org_id)
    }
