# Overview: Products, customers and suppliers master data.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Product, Supplier


class CatalogError(Exception):
    """Raised when master data operations fail."""
    pass


class CatalogNotFound(CatalogError):
    pass


PRODUCT_FIELDS = {"name", "description", "barcode", "price_cents", "cost_cents", "item_type", "is_active"}
PARTY_FIELDS = {"name", "tax_id", "email", "phone", "is_active"}


def get_product(product_id: int, org_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if not product:
        raise CatalogNotFound(f"Product {product_id} not found")
    return product


def create_product(*, org_id: int, sku: str, name: str, **fields) -> Product:
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku or not name:
        raise CatalogError("sku and name are required")
    if db.session.query(Product.id).filter_by(org_id=org_id, sku=sku).first():
        raise CatalogError(f"SKU {sku} already exists")
    if fields.get("item_type", "product") not in ("product", "service"):
        raise CatalogError("item_type must be 'product' or 'service'")

    product = Product(org_id=org_id, sku=sku, name=name)
    for key, value in fields.items():
        if key in PRODUCT_FIELDS:
            setattr(product, key, value)
    db.session.add(product)
    db.session.flush()
    return product


def update_product(product_id: int, org_id: int, **fields) -> Product:
    product = get_product(product_id, org_id)
    for key, value in fields.items():
        if key not in PRODUCT_FIELDS:
            raise CatalogError(f"Field not allowed: {key}")
        setattr(product, key, value)
    db.session.flush()
    return product


def list_products(org_id: int, *, search: str | None = None, active_only: bool = True):
    q = db.session.query(Product).filter(Product.org_id == org_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode == search))
    return q.order_by(Product.name)


def get_customer(customer_id: int, org_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
    if not customer:
        raise CatalogNotFound(f"Customer {customer_id} not found")
    return customer


def create_customer(*, org_id: int, name: str, **fields) -> Customer:
    name = (name or "").strip()
    if not name:
        raise CatalogError("Customer name is required")
    customer = Customer(org_id=org_id, name=name)
    for key, value in fields.items():
        if key in PARTY_FIELDS:
            setattr(customer, key, value)
    db.session.add(customer)
    db.session.flush()
    return customer


def list_customers(org_id: int, *, search: str | None = None):
    q = db.session.query(Customer).filter(Customer.org_id == org_id, Customer.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Customer.name.ilike(like), Customer.tax_id.ilike(like)))
    return q.order_by(Customer.name)


def get_supplier(supplier_id: int, org_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id, org_id=org_id).first()
    if not supplier:
        raise CatalogNotFound(f"Supplier {supplier_id} not found")
    return supplier


def create_supplier(*, org_id: int, name: str, **fields) -> Supplier:
    name = (name or "").strip()
    if not name:
        raise CatalogError("Supplier name is required")
    supplier = Supplier(org_id=org_id, name=name)
    for key, value in fields.items():
        if key in PARTY_FIELDS:
            setattr(supplier, key, value)
    db.session.add(supplier)
    db.session.flush()
    return supplier


def list_suppliers(org_id: int, *, search: str | None = None):
    q = db.session.query(Supplier).filter(Supplier.org_id == org_id, Supplier.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Supplier.name.ilike(like), Supplier.tax_id.ilike(like)))
    return q.order_by(Supplier.name)
