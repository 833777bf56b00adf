# Overview: Payment-terminal webhook endpoint; spools and acknowledges, processes in the background.

# backend/posrecon/routes/webhooks.py
"""
Payment Terminal Webhook

TRANSPORT CONTRACT:
- Always 200 {"ok": true}, malformed bodies included. This is a transport
  acknowledgement, not a business result.
- The only work before the response is spooling the raw body and tenant
  header into the webhook inbox (one INSERT). Parsing, matching and sale
  creation run on the webhook dispatcher.
- If the spool write fails the delivery is still handed to the dispatcher
  from memory, and the terminal still gets its 200.
- Nothing that happens afterwards is ever reported back to the terminal.
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db, webhook_dispatcher
from ..services.webhook_inbox import enqueue_delivery, process_inbox_entry
from ..services.webhook_service import process_delivery
from ..time_utils import utcnow


webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.post("/api/webhooks/payment-terminal")
@webhooks_bp.post("/api/pos/webhooks/payment-terminal")
def payment_terminal_webhook_route():
    received_at = utcnow()
    raw_body = request.get_data(cache=False)
    header_name = current_app.config.get("TENANT_HEADER", "X-Tenant-Id")
    header_tenant = (request.headers.get(header_name) or "").strip() or None

    try:
        entry_id = enqueue_delivery(raw_body, header_tenant, received_at)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to spool webhook delivery; processing from memory")
        entry_id = None

    try:
        if entry_id is not None:
            webhook_dispatcher.submit(process_inbox_entry, entry_id)
        else:
            webhook_dispatcher.submit(process_delivery, raw_body, header_tenant, received_at)
    except Exception:
        current_app.logger.exception("Failed to hand off webhook delivery")

    return jsonify({"ok": True}), 200
