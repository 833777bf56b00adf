# Overview: Clerk-triggered "finalize now" path for card checkouts.

from __future__ import annotations

from flask import current_app

from ..errors import InvalidInput, NotFound
from .sale_materializer import MaterializeResult, materialize
from .session_service import find_pending


def force_finalize(tenant_id: str, invoice_number: str) -> MaterializeResult:
    """
    Write the sale now without waiting for the terminal's reply.

    The session stays pending: revenue is recognized immediately and the
    approval webhook reconciles status later. Safe to call repeatedly.

    Raises:
        InvalidInput: tenant or invoice missing
        NotFound: no pending session for the invoice
    """
    if not tenant_id:
        raise InvalidInput("Missing tenant", details={"field": "tenant_id"})
    if not invoice_number:
        raise InvalidInput("Missing invoice", details={"field": "invoice"})

    session = find_pending(tenant_id, invoice_number)
    if session is None:
        raise NotFound(
            f"No pending session for invoice {invoice_number}",
            details={"invoice": invoice_number},
        )

    result = materialize(tenant_id, session)
    current_app.logger.info(
        "Force-finalized invoice %s for tenant %s -> sale %s (created=%s)",
        invoice_number, tenant_id, result.sale_id, result.created,
    )
    return result
