# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/bizdesk/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations are open to every user
- Catalogue writes and the stock dashboard require an admin
"""
from flask import Blueprint, request, g, jsonify, current_app

from ..services import products_service
from ..services.products_service import ProductError
from ..services.inventory_service import InsufficientStockError
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    error_response,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_admin

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category", "image",
        "price_cents", "cost_price_cents", "stock", "min_stock_level",
        "supplier_name", "supplier_phone", "is_active",
    },
    required_on_create={"name", "description", "category", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - search: matches name or SKU
    - category: exact category
    - low_stock=true: stock at or below min_stock_level
    """
    low_stock = (request.args.get("low_stock") or "").lower() in ("1", "true", "yes")
    products = products_service.list_products(
        search=request.args.get("search"),
        category=request.args.get("category"),
        low_stock=low_stock,
    )
    return jsonify([p.to_dict() for p in products]), 200


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)  # Handles price validation including max check
        created = products_service.create_product(patch, user_id=g.current_user.id)
    except (ValidationError, ConflictError, ProductError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Product creation failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify(created.to_dict(include_audit=True)), 201


@products_bp.get("/dashboard")
@require_auth
@require_admin
def dashboard_route():
    try:
        return jsonify(products_service.product_dashboard(request.args.get("range", "month"))), 200
    except ProductError as e:
        return error_response(e)


@products_bp.get("/never-sold")
@require_auth
def never_sold_route():
    products = products_service.never_sold_products()
    return jsonify({"products": [p.to_dict() for p in products], "total": len(products)}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except ProductError as e:
        return error_response(e)
    return jsonify(product.to_dict(include_audit=True)), 200


@products_bp.get("/<int:product_id>/stats")
@require_auth
def product_stats_route(product_id: int):
    try:
        return jsonify(products_service.product_stats(product_id, request.args.get("range", "month"))), 200
    except ProductError as e:
        return error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id, patch, user_id=g.current_user.id)
    except (ValidationError, ConflictError, ProductError, InsufficientStockError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Product update failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify(updated.to_dict(include_audit=True)), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
    except ProductError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Product deletion failed")
        return jsonify({"message": "Server error"}), 500

    return jsonify({"message": "Product removed"}), 200
