# Overview: Read-only stock endpoint (current quantity plus recent movements).

from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant
from ..errors import BillingError
from ..money import decimal_str
from ..services import stock_ledger
from ..services.catalog_service import lookup_product


stock_bp = Blueprint("stock", __name__, url_prefix="/api/products")


@stock_bp.get("/<int:product_id>/stock")
@require_tenant
def product_stock_route(product_id: int):
    try:
        limit = int(request.args.get("limit", 50))
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    try:
        product = lookup_product(g.shop_id, product_id, require_active=False)
        movements = stock_ledger.list_movements(g.shop_id, product_id, limit=limit)
        return jsonify({
            "product_id": product.product_id,
            "sku": product.sku,
            "stock_quantity": decimal_str(product.stock_quantity),
            "movements": [m.to_dict() for m in movements],
        }), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
