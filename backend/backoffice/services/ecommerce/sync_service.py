# Overview: Connected stores, product mappings and stock sync with Tiendanube.

"""
Stock flows local -> remote after every committed stock change (queued by
inventory_service through on_commit), and remote -> local when a
products/updated webhook arrives. A mapping remembers the last stock pushed
so echoes of our own updates do not bounce back and forth.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging

from flask import current_app

from ...extensions import db
from ...models import EcommerceProductMap, EcommerceStore, Product
from ...time_utils import utcnow
from ..audit_service import append_event
from ..catalog_service import CatalogError, create_product
from ..inventory_service import get_quantity, get_total_quantity, set_stock
from ..location_service import get_main_location
from .tiendanube_client import EcommerceError, TiendanubeClient, extract_i18n, parse_price


logger = logging.getLogger(__name__)

PLATFORM_TIENDANUBE = "tiendanube"
WEBHOOK_EVENTS = ("orders/created", "orders/paid", "products/updated", "app/uninstalled")
SIGNATURE_HEADER = "X-Linkedstore-Hmac-Sha256"


class EcommerceNotFound(EcommerceError):
    pass


class WebhookSignatureError(EcommerceError):
    pass


def client_for(store: EcommerceStore) -> TiendanubeClient:
    return TiendanubeClient.from_config(store.external_store_id, store.access_token, current_app.config)


# -- Stores --

def get_store(store_id: int, org_id: int) -> EcommerceStore:
    store = db.session.query(EcommerceStore).filter_by(id=store_id, org_id=org_id).first()
    if not store:
        raise EcommerceNotFound(f"Store {store_id} not found")
    return store


def list_stores(org_id: int) -> list[EcommerceStore]:
    return db.session.query(EcommerceStore).filter_by(org_id=org_id).order_by(EcommerceStore.id).all()


def connect_store(
    *,
    org_id: int,
    external_store_id: str,
    access_token: str,
    location_id: int | None = None,
    user_id: int | None = None,
) -> EcommerceStore:
    """Connect (or reconnect) a Tiendanube store with a fresh access token."""
    external_store_id = str(external_store_id or "").strip()
    if not external_store_id or not access_token:
        raise EcommerceError("external_store_id and access_token are required")

    store = db.session.query(EcommerceStore).filter_by(
        platform=PLATFORM_TIENDANUBE, external_store_id=external_store_id
    ).first()
    if store and store.org_id != org_id:
        raise EcommerceError("Store is connected to another organization")

    if store is None:
        store = EcommerceStore(org_id=org_id, platform=PLATFORM_TIENDANUBE, external_store_id=external_store_id)
        db.session.add(store)
    store.access_token = access_token
    store.location_id = location_id
    store.is_active = True
    store.connected_at = utcnow()
    store.disconnected_at = None
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="ecommerce.store_connected",
        entity_type="ecommerce_store",
        entity_id=store.id,
        actor_user_id=user_id,
        payload={"external_store_id": external_store_id},
    )
    return store


def disconnect_store(store: EcommerceStore, *, user_id: int | None = None, reason: str | None = None) -> EcommerceStore:
    store.is_active = False
    store.disconnected_at = utcnow()
    db.session.flush()
    append_event(
        org_id=store.org_id,
        event_type="ecommerce.store_disconnected",
        entity_type="ecommerce_store",
        entity_id=store.id,
        actor_user_id=user_id,
        note=reason,
    )
    return store


# -- Mappings --

def map_product(*, store_id: int, org_id: int, product_id: int, remote_product_id,
                remote_variant_id) -> EcommerceProductMap:
    store = get_store(store_id, org_id)
    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if not product:
        raise EcommerceError(f"Product {product_id} not found")

    mapping = db.session.query(EcommerceProductMap).filter_by(
        store_id=store.id, remote_variant_id=str(remote_variant_id)
    ).first()
    if mapping is None:
        mapping = EcommerceProductMap(store_id=store.id, remote_variant_id=str(remote_variant_id))
        db.session.add(mapping)
    mapping.product_id = product.id
    mapping.remote_product_id = str(remote_product_id)
    mapping.last_pushed_stock = None
    db.session.flush()
    return mapping


def unmap_product(mapping_id: int, org_id: int) -> None:
    mapping = (
        db.session.query(EcommerceProductMap)
        .join(EcommerceStore, EcommerceStore.id == EcommerceProductMap.store_id)
        .filter(EcommerceProductMap.id == mapping_id, EcommerceStore.org_id == org_id)
        .first()
    )
    if not mapping:
        raise EcommerceNotFound(f"Mapping {mapping_id} not found")
    db.session.delete(mapping)
    db.session.flush()


def list_mappings(store_id: int, org_id: int) -> list[EcommerceProductMap]:
    store = get_store(store_id, org_id)
    return (
        db.session.query(EcommerceProductMap)
        .filter_by(store_id=store.id)
        .order_by(EcommerceProductMap.id)
        .all()
    )


# -- Local -> remote stock --

def stock_for_store(store: EcommerceStore, product_id: int) -> int:
    """Quantity published to a store: its location's stock, or the total across locations."""
    if store.location_id is not None:
        return max(0, get_quantity(product_id, store.location_id))
    return max(0, get_total_quantity(product_id))


def sync_product_stock(product_id: int, *, force: bool = False) -> list[dict]:
    """
    Push a product's stock to every active store where it is mapped.

    Failures of one mapping are logged and reported; the rest still run.
    Commits the bookkeeping (last_pushed_stock, last_synced_at).
    """
    mappings = (
        db.session.query(EcommerceProductMap)
        .join(EcommerceStore, EcommerceStore.id == EcommerceProductMap.store_id)
        .filter(EcommerceProductMap.product_id == product_id, EcommerceStore.is_active.is_(True))
        .all()
    )
    results = []
    clients: dict[int, TiendanubeClient] = {}
    try:
        for mapping in mappings:
            store = mapping.store
            stock = stock_for_store(store, product_id)
            if not force and mapping.last_pushed_stock == stock:
                results.append({"mapping_id": mapping.id, "stock": stock, "status": "unchanged"})
                continue
            client = clients.get(store.id)
            if client is None:
                client = clients[store.id] = client_for(store)
            try:
                client.update_variant_stock(mapping.remote_product_id, mapping.remote_variant_id, stock)
            except EcommerceError as e:
                logger.warning(
                    "Stock sync failed for product %s on store %s: %s", product_id, store.external_store_id, e
                )
                results.append({"mapping_id": mapping.id, "stock": stock, "status": "error", "error": str(e)})
                continue
            mapping.last_pushed_stock = stock
            store.last_synced_at = utcnow()
            results.append({"mapping_id": mapping.id, "stock": stock, "status": "synced"})
    finally:
        for client in clients.values():
            client.close()

    db.session.commit()
    return results


def sync_product_stock_safely(product_id: int) -> None:
    """Post-commit entry point: never lets a sync problem reach the request."""
    try:
        sync_product_stock(product_id)
    except Exception:
        db.session.rollback()
        logger.exception("Stock sync crashed for product %s", product_id)


def sync_store_stock(store_id: int, org_id: int) -> list[dict]:
    store = get_store(store_id, org_id)
    if not store.is_active:
        raise EcommerceError("Store is disconnected")
    results = []
    for product_id in sorted({m.product_id for m in store.mappings}):
        results.extend(sync_product_stock(product_id, force=True))
    return results


# -- Remote -> local products --

def _stock_location_id(store: EcommerceStore) -> int | None:
    if store.location_id is not None:
        return store.location_id
    main = get_main_location(store.org_id)
    return main.id if main else None


def _apply_remote_product(store: EcommerceStore, product: Product, remote: dict, variant: dict,
                          mapping: EcommerceProductMap, user_id: int | None) -> None:
    name = extract_i18n(remote.get("name"))
    if name:
        product.name = name
    product.description = extract_i18n(remote.get("description")) or None
    sku = variant.get("sku")
    if sku and sku != product.sku:
        taken = db.session.query(Product.id).filter(
            Product.org_id == product.org_id, Product.sku == sku, Product.id != product.id
        ).first()
        if not taken:
            product.sku = sku
    if variant.get("barcode"):
        product.barcode = variant["barcode"]
    price = parse_price(variant.get("price"))
    if price is not None:
        product.price_cents = price
    cost = parse_price(variant.get("cost"))
    if cost is not None:
        product.cost_cents = cost
    if "published" in remote:
        product.is_active = bool(remote["published"])
    db.session.flush()

    remote_stock = variant.get("stock")
    location_id = _stock_location_id(store)
    if remote_stock is not None and location_id is not None and product.tracks_stock:
        set_stock(
            org_id=product.org_id,
            product_id=product.id,
            location_id=location_id,
            quantity=max(0, int(remote_stock)),
            user_id=user_id,
            reason="ecommerce_sync",
            note=f"Tiendanube {store.external_store_id}",
        )
        mapping.last_pushed_stock = max(0, int(remote_stock))
    mapping.remote_product_id = str(remote["id"])
    db.session.flush()


def import_products(store_id: int, org_id: int, *, user_id: int | None = None) -> dict:
    """
    Pull every remote product into the catalogue.

    Mapped products are refreshed; unmapped ones are matched by SKU or
    created. Per-product failures are collected in "errors".
    """
    store = get_store(store_id, org_id)
    if not store.is_active:
        raise EcommerceError("Store is disconnected")

    with client_for(store) as client:
        remote_products = client.get_products()

    created = updated = 0
    errors = []
    for remote in remote_products:
        variants = remote.get("variants") or []
        if not variants:
            errors.append(f"Remote product #{remote.get('id')} has no variants, skipped")
            continue
        variant = variants[0]
        try:
            mapping = db.session.query(EcommerceProductMap).filter_by(
                store_id=store.id, remote_variant_id=str(variant["id"])
            ).first()
            if mapping is not None:
                product = mapping.product
                updated += 1
            else:
                sku = variant.get("sku") or f"TN-{remote['id']}"
                product = db.session.query(Product).filter_by(org_id=org_id, sku=sku).first()
                if product is None:
                    product = create_product(
                        org_id=org_id,
                        sku=sku,
                        name=extract_i18n(remote.get("name")) or sku,
                        price_cents=parse_price(variant.get("price")) or 0,
                    )
                    created += 1
                else:
                    updated += 1
                mapping = EcommerceProductMap(
                    store_id=store.id,
                    product_id=product.id,
                    remote_product_id=str(remote["id"]),
                    remote_variant_id=str(variant["id"]),
                )
                db.session.add(mapping)
                db.session.flush()
            _apply_remote_product(store, product, remote, variant, mapping, user_id)
        except (CatalogError, EcommerceError, KeyError) as e:
            errors.append(f"Remote product #{remote.get('id')}: {e}")

    store.last_synced_at = utcnow()
    db.session.flush()
    append_event(
        org_id=org_id,
        event_type="ecommerce.products_imported",
        entity_type="ecommerce_store",
        entity_id=store.id,
        actor_user_id=user_id,
        payload={"created": created, "updated": updated, "errors": len(errors)},
    )
    return {"created": created, "updated": updated, "errors": errors}


# -- Webhooks --

def register_webhooks(store: EcommerceStore, base_url: str) -> list[dict]:
    """Subscribe the store's standard events to our webhook endpoint, skipping existing ones."""
    url = f"{base_url.rstrip('/')}/api/ecommerce/webhooks/tiendanube"
    results = []
    with client_for(store) as client:
        existing = {(w.get("event"), w.get("url")) for w in client.list_webhooks()}
        for event in WEBHOOK_EVENTS:
            if (event, url) in existing:
                results.append({"event": event, "success": True, "skipped": True})
                continue
            try:
                client.create_webhook(event, url)
                results.append({"event": event, "success": True})
            except EcommerceError as e:
                logger.warning("Webhook %s registration failed for store %s: %s", event, store.external_store_id, e)
                results.append({"event": event, "success": False, "error": str(e)})
    return results


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> None:
    """HMAC-SHA256 of the raw body with the app secret; skipped when no secret is configured."""
    if not secret:
        return
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Invalid webhook signature", status_code=401)


def _refresh_product(store: EcommerceStore, remote_product_id) -> bool:
    mappings = db.session.query(EcommerceProductMap).filter_by(
        store_id=store.id, remote_product_id=str(remote_product_id)
    ).all()
    if not mappings:
        return False

    with client_for(store) as client:
        remote = client.get_product(remote_product_id)

    variants = {str(v.get("id")): v for v in remote.get("variants") or []}
    for mapping in mappings:
        variant = variants.get(mapping.remote_variant_id)
        if variant is None:
            continue
        _apply_remote_product(store, mapping.product, remote, variant, mapping, None)
    return True


def handle_webhook(raw_body: bytes, signature: str | None = None) -> dict:
    """
    Process a Tiendanube webhook.

    Raises:
        WebhookSignatureError: bad signature (401)
        EcommerceError: malformed payload (400)
        EcommerceNotFound: unknown store (404)
    """
    verify_signature(raw_body, signature, current_app.config.get("TIENDANUBE_WEBHOOK_SECRET"))

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise EcommerceError("Invalid JSON payload", status_code=400)
    if not isinstance(payload, dict):
        raise EcommerceError("Invalid JSON payload", status_code=400)

    external_store_id = payload.get("store_id")
    event = payload.get("event")
    if not external_store_id or not event:
        raise EcommerceError("Missing store_id or event", status_code=400)

    store = db.session.query(EcommerceStore).filter_by(
        platform=PLATFORM_TIENDANUBE, external_store_id=str(external_store_id)
    ).first()
    if not store:
        raise EcommerceNotFound("Store not found", status_code=404)

    handled = False
    if event == "products/updated" and payload.get("id") and store.is_active:
        handled = _refresh_product(store, payload["id"])
    elif event == "app/uninstalled" and store.is_active:
        disconnect_store(store, reason="app/uninstalled")
        handled = True

    logger.info("Tiendanube webhook %s for store %s (handled=%s)", event, external_store_id, handled)
    return {"ok": True, "event": event, "handled": handled}
