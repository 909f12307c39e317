# Overview: Flask API routes for held (parked) carts.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import BillingError
from ..services import held_cart_service


held_carts_bp = Blueprint("held_carts", __name__, url_prefix="/api/held-carts")


def _snapshot_from_body(data: dict):
    """Accept {"snapshot": {...}} or the legacy {"bill_data": {...}} body."""
    if "snapshot" in data:
        return data["snapshot"]
    bill_data = data.get("bill_data")
    if isinstance(bill_data, dict) and "schema_version" not in bill_data:
        bill_data = {**bill_data, "schema_version": held_cart_service.LEGACY_SCHEMA_VERSION}
    return bill_data


@held_carts_bp.get("")
@require_tenant
def list_held_carts_route():
    """
    List held carts for the shop, most recently touched first.

    ?mine=1 limits the list to the calling user's carts.
    """
    mine = (request.args.get("mine") or "").lower() in ("1", "true", "yes")
    held = held_cart_service.list_held(g.shop_id, g.actor.user_id if mine else None)
    return jsonify({"held_carts": [h.to_dict() for h in held]}), 200


@held_carts_bp.post("")
@require_tenant
def hold_cart_route():
    try:
        data = request.get_json(silent=True) or {}
        held = held_cart_service.hold(g.shop_id, g.actor, _snapshot_from_body(data), data.get("label"))
        return jsonify({"held_cart": held.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to hold cart")
        return jsonify({"error": "Internal server error"}), 500


@held_carts_bp.get("/<int:held_id>")
@require_tenant
def recall_cart_route(held_id: int):
    """
    Recall a held cart. The cart is NOT deleted; the client discards it after
    the invoice is created. "snapshot_raw" is the exact stored text.
    """
    try:
        recalled = held_cart_service.recall(g.shop_id, held_id)
        return jsonify({
            "held_cart": recalled.held.to_dict(),
            "snapshot": recalled.snapshot.to_dict(),
            "snapshot_raw": recalled.raw,
        }), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@held_carts_bp.put("/<int:held_id>")
@require_tenant
def update_held_cart_route(held_id: int):
    try:
        data = request.get_json(silent=True) or {}
        held = held_cart_service.update_held(g.shop_id, held_id, _snapshot_from_body(data), data.get("label"))
        return jsonify({"held_cart": held.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update held cart")
        return jsonify({"error": "Internal server error"}), 500


@held_carts_bp.delete("/<int:held_id>")
@require_tenant
def discard_held_cart_route(held_id: int):
    try:
        held_cart_service.discard(g.shop_id, held_id)
        return jsonify({"status": "discarded", "held_cart_id": held_id}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to discard held cart")
        return jsonify({"error": "Internal server error"}), 500
