# Overview: Flask API routes for the product catalog and categories; parses input and returns JSON responses.

# backend/posledger/routes/products.py
"""
Catalog API routes.

Products live under /api/inventory. PUT edits master data only; stock
moves through /api/sales, /api/inventory/adjustments and /api/stock-count.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import products_service
from ..services.products_service import ProductError
from ..validation import ConflictError, ValidationError
from ..decorators import require_auth, require_permission


products_bp = Blueprint("products", __name__, url_prefix="/api/inventory")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@products_bp.get("")
@require_auth
@require_permission("products.view")
def list_products_route():
    """
    List products.

    Query params: q, category (id), stock (low|out), active (true), take, skip
    """
    try:
        take = min(max(_to_int(request.args.get("take"), 100), 1), 500)
        skip = max(_to_int(request.args.get("skip"), 0), 0)
        rows, total = products_service.list_products(
            q=request.args.get("q"),
            category_id=_to_int(request.args.get("category"), None),
            stock=request.args.get("stock") or None,
            active_only=(request.args.get("active") or "").lower() in ("1", "true", "yes"),
            take=take,
            skip=skip,
        )
        return jsonify({
            "data": [p.to_dict() for p in rows],
            "total": total,
            "take": take,
            "skip": skip,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400


@products_bp.post("")
@require_auth
@require_permission("products.create")
def create_product_route():
    try:
        product, warnings = products_service.create_product(request.get_json(silent=True))
        current_app.logger.info("Product %s (%s) created", product.id, product.sku)
        return jsonify({"product": product.to_dict(), "warnings": warnings}), 201
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {}}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("products.view")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except ProductError as e:
        return jsonify({"error": str(e), "details": {"product_id": product_id}}), 404
    return jsonify({"product": product.to_dict()}), 200


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("products.edit")
def update_product_route(product_id: int):
    try:
        product, warnings = products_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"product": product.to_dict(), "warnings": warnings}), 200
    except ProductError as e:
        return jsonify({"error": str(e), "details": {"product_id": product_id}}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {}}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("products.delete")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
        current_app.logger.info("Product %s deleted", product_id)
        return jsonify({"message": "Product deleted successfully"}), 200
    except ProductError as e:
        return jsonify({"error": str(e), "details": {"product_id": product_id}}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {"product_id": product_id}}), 409
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.get("")
@require_auth
@require_permission("products.view")
def list_categories_route():
    rows = products_service.list_categories(request.args.get("q"))
    return jsonify({"data": [c.to_dict() for c in rows]}), 200


@categories_bp.post("")
@require_auth
@require_permission("products.create")
def create_category_route():
    try:
        category = products_service.create_category(request.get_json(silent=True))
        return jsonify({"category": category.to_dict()}), 201
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {}}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
