# Overview: Flask API routes for card checkout reconciliation; parses input and returns JSON responses.

# backend/posrecon/routes/checkout.py
"""
Checkout API Routes

DESIGN:
- force-finalize writes the sale now; the session stays pending until the
  terminal's approval webhook reconciles it
- resend books a re-publish of a pending invoice (next attempt, new req_txn_id)
- status is the POS poll endpoint
- sales lists the tenant's completed sales

All routes require the tenant header (see decorators.require_tenant).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ReconciliationError
from ..services import finalize_service, reporting_service, session_service
from ..decorators import require_tenant
from ..time_utils import parse_day_bound


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/force-finalize")
@require_tenant
def force_finalize_route():
    """
    Finalize a card sale without waiting for the terminal.

    Request body:
    {
        "invoice": "INV-1001"
    }

    Returns:
        200: {"ok": true, "sale_id": 17}
        400: Missing tenant or invoice
        404: No pending session for the invoice
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = str(data.get("invoice") or "").strip()

        if not invoice:
            return jsonify({
                "ok": False,
                "error": "missing_field",
                "message": "Missing invoice",
                "details": {"field": "invoice"},
            }), 400

        result = finalize_service.force_finalize(g.tenant_id, invoice)
        return jsonify({"ok": True, "sale_id": result.sale_id}), 200

    except ReconciliationError as e:
        if e.http_status >= 500:
            current_app.logger.warning("Force-finalize failed: %s", e)
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to force-finalize checkout")
        return jsonify({"ok": False, "error": "Internal server error"}), 500


@checkout_bp.post("/resend")
@require_tenant
def resend_route():
    """
    Book another attempt at charging the same invoice on the terminal.

    Request body:
    {
        "invoice": "INV-1001"
    }

    Returns:
        200: {"ok": true, "invoice": "INV-1001", "attempt": 2, "req_txn_id": "rtx_..."}
        400: Missing tenant or invoice
        404: No pending session for the invoice
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice = str(data.get("invoice") or "").strip()

        if not invoice:
            return jsonify({
                "ok": False,
                "error": "missing_field",
                "message": "Missing invoice",
                "details": {"field": "invoice"},
            }), 400

        session = session_service.record_resend(g.tenant_id, invoice)
        return jsonify({
            "ok": True,
            "invoice": session.invoice_number,
            "attempt": session.attempt,
            "req_txn_id": session.req_txn_id,
        }), 200

    except ReconciliationError as e:
        if e.http_status >= 500:
            current_app.logger.warning("Resend failed: %s", e)
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to book checkout resend")
        return jsonify({"ok": False, "error": "Internal server error"}), 500


@checkout_bp.get("/status")
@require_tenant
def checkout_status_route():
    """
    Poll the outcome of a card checkout.

    Query params:
    - invoice: invoice number (required)

    Returns status pending / approved (with sale_id) / declined (with message).
    """
    invoice = (request.args.get("invoice") or "").strip()
    if not invoice:
        return jsonify({
            "ok": False,
            "error": "missing_field",
            "message": "Missing invoice",
            "details": {"field": "invoice"},
        }), 400

    try:
        return jsonify(reporting_service.get_checkout_status(g.tenant_id, invoice)), 200
    except Exception:
        current_app.logger.exception("Failed to load checkout status")
        return jsonify({"ok": False, "error": "Internal server error"}), 500


@checkout_bp.get("/sales")
@require_tenant
def list_sales_route():
    """
    List the tenant's sales, newest first (max 200).

    Query params:
    - preset: "today" (default when no range is given)
    - from / to: ISO date or date-time, inclusive
    """
    try:
        start = parse_day_bound(request.args.get("from"))
        end = parse_day_bound(request.args.get("to"), end_of_day=True)
    except ValueError:
        return jsonify({
            "ok": False,
            "error": "missing_field",
            "message": "from/to must be ISO-8601 dates",
            "details": {"field": "from,to"},
        }), 400

    try:
        sales = reporting_service.list_sales(
            g.tenant_id,
            preset=request.args.get("preset"),
            start=start,
            end=end,
        )
        return jsonify({"ok": True, "rows": [s.to_dict() for s in sales]}), 200
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"ok": False, "error": "Internal server error"}), 500
