# Overview: Flask API routes for the Tiendanube integration, including the public webhook.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services.concurrency import commit_with_retry
from ..services.ecommerce import sync_service
from ..services.ecommerce.tiendanube_client import EcommerceError
from ..validation import ValidationError, parse_int, parse_optional_int, require_fields


ecommerce_bp = Blueprint("ecommerce", __name__, url_prefix="/api/ecommerce")


@ecommerce_bp.get("/stores")
@require_auth
@require_permission("settings:write")
def list_stores_route():
    return jsonify({"stores": [s.to_dict() for s in sync_service.list_stores(g.org_id)]}), 200


@ecommerce_bp.post("/stores")
@require_auth
@require_permission("settings:write")
def connect_store_route():
    """
    Connect a Tiendanube store.

    Request body:
    {
        "external_store_id": str,
        "access_token": str,
        "location_id": int (optional, stock source; defaults to all locations),
        "register_webhooks": bool (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "external_store_id", "access_token")
        store = sync_service.connect_store(
            org_id=g.org_id,
            external_store_id=data["external_store_id"],
            access_token=data["access_token"],
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            user_id=g.current_user.id,
        )
        commit_with_retry()

        webhooks = None
        if data.get("register_webhooks"):
            webhooks = sync_service.register_webhooks(store, request.host_url)
        return jsonify({**store.to_dict(), "webhooks": webhooks}), 201

    except (ValidationError, EcommerceError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to connect e-commerce store")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/stores/<int:store_id>/disconnect")
@require_auth
@require_permission("settings:write")
def disconnect_store_route(store_id: int):
    try:
        store = sync_service.disconnect_store(
            sync_service.get_store(store_id, g.org_id), user_id=g.current_user.id
        )
        commit_with_retry()
        return jsonify(store.to_dict()), 200

    except sync_service.EcommerceNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to disconnect e-commerce store")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.get("/stores/<int:store_id>/mappings")
@require_auth
@require_permission("products:read")
def list_mappings_route(store_id: int):
    try:
        mappings = sync_service.list_mappings(store_id, g.org_id)
    except sync_service.EcommerceNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"mappings": [m.to_dict() for m in mappings]}), 200


@ecommerce_bp.post("/stores/<int:store_id>/mappings")
@require_auth
@require_permission("products:write")
def map_product_route(store_id: int):
    """Body: {"product_id": int, "remote_product_id": str|int, "remote_variant_id": str|int}"""
    try:
        data = require_fields(request.get_json(), "product_id", "remote_product_id", "remote_variant_id")
        mapping = sync_service.map_product(
            store_id=store_id,
            org_id=g.org_id,
            product_id=parse_int(data["product_id"], "product_id"),
            remote_product_id=data["remote_product_id"],
            remote_variant_id=data["remote_variant_id"],
        )
        commit_with_retry()
        return jsonify(mapping.to_dict()), 201

    except sync_service.EcommerceNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, EcommerceError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to map e-commerce product")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.delete("/mappings/<int:mapping_id>")
@require_auth
@require_permission("products:write")
def unmap_product_route(mapping_id: int):
    try:
        sync_service.unmap_product(mapping_id, g.org_id)
        commit_with_retry()
        return jsonify({"message": "Mapping removed"}), 200

    except sync_service.EcommerceNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to remove e-commerce mapping")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/stores/<int:store_id>/import")
@require_auth
@require_permission("products:write")
def import_products_route(store_id: int):
    """Pull the remote catalogue; returns {"created", "updated", "errors"}."""
    try:
        result = sync_service.import_products(store_id, g.org_id, user_id=g.current_user.id)
        commit_with_retry()
        return jsonify(result), 200

    except sync_service.EcommerceNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except EcommerceError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 502 if e.status_code else 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import e-commerce products")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/stores/<int:store_id>/sync-stock")
@require_auth
@require_permission("inventory:write")
def sync_stock_route(store_id: int):
    """Push current stock of every mapped product to the store."""
    try:
        results = sync_service.sync_store_stock(store_id, g.org_id)
        return jsonify({"results": results}), 200

    except sync_service.EcommerceNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except EcommerceError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync e-commerce stock")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/stores/<int:store_id>/webhooks")
@require_auth
@require_permission("settings:write")
def register_webhooks_route(store_id: int):
    try:
        store = sync_service.get_store(store_id, g.org_id)
        results = sync_service.register_webhooks(store, request.host_url)
        return jsonify({"webhooks": results}), 200

    except sync_service.EcommerceNotFound as e:
        return jsonify({"error": str(e)}), 404
    except EcommerceError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register e-commerce webhooks")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/webhooks/tiendanube")
def tiendanube_webhook_route():
    """
    Public endpoint called by Tiendanube. Authenticated by the HMAC signature
    header, not by a session token.

    Returns:
        200: {"ok": true, "event": str, "handled": bool}
        400: Malformed payload
        401: Bad signature
        404: Unknown store
    """
    try:
        result = sync_service.handle_webhook(
            request.get_data(), request.headers.get(sync_service.SIGNATURE_HEADER)
        )
        commit_with_retry()
        return jsonify(result), 200

    except EcommerceError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), e.status_code or 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process Tiendanube webhook")
        return jsonify({"error": "Internal server error"}), 500
