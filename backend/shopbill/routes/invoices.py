# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/shopbill/routes/invoices.py
"""Invoice API routes (create, edit, cancel, lock, read)"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant, require_role
from ..errors import BillingError
from ..services import invoice_service
from ..services.calculator import tax_breakdown
from ..services.cart_schemas import ROLE_ADMIN, ROLE_SUPER_ADMIN, parse_cart
from ..money import decimal_str
from ..time_utils import parse_iso_date


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


def _preview_line(priced, result) -> dict:
    return {
        "product_id": priced.product_id,
        "product_name": priced.product_name,
        "quantity": decimal_str(priced.quantity),
        "unit_price": decimal_str(priced.unit_price),
        "discount_amount": decimal_str(priced.line_discount),
        "tax_rate": decimal_str(priced.tax_rate),
        "line_subtotal": decimal_str(result.line_subtotal),
        "taxable_amount": decimal_str(result.taxable_amount),
        "tax_amount": decimal_str(result.tax_amount),
        "line_total": decimal_str(result.line_total),
    }


@invoices_bp.post("/preview")
@require_tenant
def preview_invoice_route():
    """
    Price and total a cart without saving anything.

    Body: same shape as POST /api/invoices.
    """
    try:
        cart = parse_cart(request.get_json(silent=True))
        priced, totals = invoice_service.preview_cart(g.shop_id, cart)

        return jsonify({
            "totals": totals.to_dict(),
            "lines": [_preview_line(p, r) for p, r in zip(priced, totals.lines)],
            "tax_breakdown": [row.to_dict() for row in tax_breakdown(totals.lines, totals.include_tax)],
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to preview invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
@require_tenant
def create_invoice_route():
    """
    Create a completed invoice and decrement stock atomically.

    Body:
    {
        "items": [{"product_id": 1, "quantity": "2", "unit_price": "100", "discount_amount": "0", "tax_rate": "18"}],
        "discount": {"kind": "amount", "value": "20"},
        "include_tax": true,
        "payment_mode": "cash",
        "customer": {"name": "...", "phone": "..."},
        "notes": "..."
    }
    """
    try:
        cart = parse_cart(request.get_json(silent=True))
        invoice = invoice_service.create_invoice(g.shop_id, cart, g.actor)
        return jsonify({"invoice": invoice.to_dict(include_lines=True)}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_tenant
def list_invoices_route():
    """
    List invoices, newest first.

    Query params: start_date, end_date (YYYY-MM-DD), status, payment_mode,
    page (default 1), limit (default 50, max 500).
    """
    try:
        start_date = parse_iso_date(request.args.get("start_date"))
        end_date = parse_iso_date(request.args.get("end_date"))
        page = _int_arg("page", 1)
        limit = _int_arg("limit", 50)
    except ValueError:
        return jsonify({"error": "Invalid query parameters"}), 400

    try:
        rows, total = invoice_service.list_invoices(
            g.shop_id,
            start_date=start_date,
            end_date=end_date,
            status=request.args.get("status") or None,
            payment_mode=request.args.get("payment_mode") or None,
            page=page,
            limit=limit,
        )
        return jsonify({
            "invoices": [invoice.to_dict() for invoice in rows],
            "pagination": {"page": max(page, 1), "limit": limit, "total": total},
        }), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_tenant
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.shop_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_lines=True)}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.get("/<int:invoice_id>/tax-breakdown")
@require_tenant
def tax_breakdown_route(invoice_id: int):
    """Per-rate taxable value with the two half components, for printing."""
    try:
        invoice = invoice_service.get_invoice(g.shop_id, invoice_id)
        rows = invoice_service.invoice_tax_breakdown(invoice)
        return jsonify({
            "invoice_id": invoice.id,
            "include_tax": invoice.include_tax,
            "rows": [row.to_dict() for row in rows],
        }), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.get("/<int:invoice_id>/edit-check")
@require_tenant
def edit_check_route(invoice_id: int):
    try:
        check = invoice_service.check_edit(
            g.shop_id,
            invoice_id,
            g.actor,
            allow_with_returns=_flag(request.args.get("allow_with_returns")),
        )
        return jsonify(check.to_dict()), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.put("/<int:invoice_id>")
@require_tenant
def edit_invoice_route(invoice_id: int):
    """
    Replace an invoice's lines and header fields.

    Body: cart fields as for create, plus
    - reason (required)
    - expected_version (optional, from the invoice's version_id)
    - allow_with_returns (optional override)
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = parse_cart(data)

        expected_version = data.get("expected_version")
        if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
            return jsonify({"error": "expected_version must be an integer"}), 400

        invoice = invoice_service.edit_invoice(
            g.shop_id,
            invoice_id,
            cart,
            data.get("reason"),
            g.actor,
            expected_version=expected_version,
            allow_with_returns=_flag(data.get("allow_with_returns")),
        )
        return jsonify({"invoice": invoice.to_dict(include_lines=True)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_tenant
def cancel_invoice_route(invoice_id: int):
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.cancel_invoice(g.shop_id, invoice_id, g.actor, data.get("reason"))
        return jsonify({"invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/edits")
@require_tenant
def list_edits_route(invoice_id: int):
    try:
        audits = invoice_service.list_edit_audits(g.shop_id, invoice_id)
        return jsonify({"edits": [audit.to_dict() for audit in audits]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.post("/<int:invoice_id>/lock")
@require_tenant
@require_role(ROLE_ADMIN, ROLE_SUPER_ADMIN)
def lock_invoice_route(invoice_id: int):
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.lock_invoice(g.shop_id, invoice_id, g.actor, data.get("reason"))
        return jsonify({"invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to lock invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/unlock")
@require_tenant
@require_role(ROLE_SUPER_ADMIN)
def unlock_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.unlock_invoice(g.shop_id, invoice_id, g.actor)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to unlock invoice")
        return jsonify({"error": "Internal server error"}), 500
