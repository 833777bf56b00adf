# Overview: Background processing of payment-terminal webhook deliveries.

"""
Webhook Processing

WHY: The terminal reports the outcome of a card charge asynchronously. The
route has already acknowledged the delivery; everything here runs out of
band and never reports back to the terminal.

STEPS (each best-effort, failures logged and dropped):
1. Parse the body (malformed JSON degrades to an empty, pending payload).
2. Extract correlation keys (req_txn_id, invoice number) via aliases.
3. Resolve the session.
4. Append the raw delivery to the webhook log. Always.
5. Normalize status and transition the session.
6. On approval, materialize the sale (idempotent).

No step is retried here. Business failures are final for the delivery; only
a crash of the whole pipeline leaves its inbox row to be re-drained (see
webhook_inbox), and every step is safe to run again for the same delivery.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import Conflict, InvalidInput, NotFound, Transient
from ..extensions import db
from ..models import PaymentSession
from ..models.checkout import SESSION_STATUS_APPROVED
from ..models.webhooks import (
    TENANT_SOURCE_HEADER,
    TENANT_SOURCE_NONE,
    TENANT_SOURCE_PAYLOAD,
    TENANT_SOURCE_SESSION,
)
from ..time_utils import utcnow
from . import session_service
from .sale_materializer import materialize
from .terminal_payload import TerminalPayload, parse_terminal_payload
from .webhook_log_service import append_webhook_log


OUTCOME_ORPHAN = "orphan"
OUTCOME_CONFLICT = "conflict"
OUTCOME_UPDATED = "updated"
OUTCOME_MATERIALIZED = "materialized"
OUTCOME_FAILED = "failed"


@dataclass
class DeliveryOutcome:
    outcome: str
    status: str
    log_id: int | None = None
    session_id: int | None = None
    sale_id: int | None = None


def resolve_session(header_tenant: str | None, payload: TerminalPayload) -> PaymentSession | None:
    """
    Find the session a delivery refers to.

    Order: header tenant + req_txn_id, header tenant + invoice, req_txn_id
    alone, invoice alone when exactly one tenant holds it. A tenant found in
    the payload body is never used for matching.
    """
    req_txn_id = payload.req_txn_id
    invoice_number = payload.invoice_number

    if header_tenant:
        if req_txn_id:
            session = session_service.find_by_req_txn_id(req_txn_id, tenant_id=header_tenant)
            if session:
                return session
        if invoice_number:
            return session_service.find_latest(header_tenant, invoice_number)
        return None

    if req_txn_id:
        session = session_service.find_by_req_txn_id(req_txn_id)
        if session:
            return session

    if invoice_number:
        tenants = session_service.find_tenants_for_invoice(invoice_number)
        if len(tenants) == 1:
            return session_service.find_latest(tenants[0], invoice_number)
        if len(tenants) > 1:
            current_app.logger.warning(
                "Invoice %s is held by %d tenants; delivery left unmatched",
                invoice_number, len(tenants),
            )
    return None


def attribute_tenant(
    session: PaymentSession | None,
    header_tenant: str | None,
    payload: TerminalPayload,
) -> tuple[str | None, str]:
    """Advisory tenant for the log entry and where it came from."""
    if session is not None:
        return session.tenant_id, TENANT_SOURCE_SESSION
    if header_tenant:
        return header_tenant, TENANT_SOURCE_HEADER
    hint = payload.tenant_hint
    if hint:
        return hint[:64], TENANT_SOURCE_PAYLOAD
    return None, TENANT_SOURCE_NONE


def process_delivery(
    raw_body: Any,
    header_tenant: str | None = None,
    received_at: Optional[datetime] = None,
    *,
    inbox_id: int | None = None,
) -> DeliveryOutcome:
    """
    Run one accepted webhook delivery to completion.

    inbox_id ties the audit-log entry to the spooled delivery, so replaying
    an inbox row after a crash never logs it twice.
    """
    received_at = received_at or utcnow()
    payload = parse_terminal_payload(raw_body)
    status = payload.status
    outcome = DeliveryOutcome(outcome=OUTCOME_FAILED, status=status)

    if payload.problem is not None:
        current_app.logger.warning("%s; treating as pending", payload.problem)

    session = None
    try:
        session = resolve_session(header_tenant, payload)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Session lookup failed for webhook delivery", exc_info=True)

    session_id = session.id if session is not None else None
    tenant_id, tenant_source = attribute_tenant(session, header_tenant, payload)

    try:
        entry = append_webhook_log(
            payload,
            tenant_id=tenant_id,
            tenant_source=tenant_source,
            matched_session_id=session_id,
            received_at=received_at,
            inbox_id=inbox_id,
        )
        outcome.log_id = entry.id
    except (Transient, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception(
            "Failed to append webhook log (req_txn_id=%s, invoice=%s)",
            payload.req_txn_id, payload.invoice_number,
        )
        if inbox_id is not None:
            # Leave the inbox row unprocessed so the delivery is logged on re-drain
            raise

    if session is None:
        current_app.logger.info(
            "Orphan webhook delivery (req_txn_id=%s, invoice=%s, status=%s)",
            payload.req_txn_id, payload.invoice_number, status,
        )
        outcome.outcome = OUTCOME_ORPHAN
        return outcome

    outcome.session_id = session_id
    session_tenant = session.tenant_id
    invoice_number = session.invoice_number

    try:
        session = session_service.transition_status(
            session_tenant, invoice_number, status, payload.data, session_id=session_id,
        )
    except NotFound:
        current_app.logger.info("Session %s vanished before status update", session_id)
        outcome.outcome = OUTCOME_ORPHAN
        return outcome
    except Conflict:
        # Already logged and recorded in the session ledger
        outcome.outcome = OUTCOME_CONFLICT
        return outcome
    except (Transient, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.warning(
            "Dropped status update for session %s; store unavailable", session_id, exc_info=True,
        )
        return outcome

    outcome.outcome = OUTCOME_UPDATED
    outcome.sale_id = session.sale_id

    if status != SESSION_STATUS_APPROVED:
        return outcome

    try:
        result = materialize(session_tenant, session)
    except InvalidInput:
        current_app.logger.error(
            "Approved session %s (invoice %s) has no usable pos_snapshot; sale not created",
            session_id, invoice_number,
        )
        return outcome
    except (Transient, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.warning(
            "Dropped sale materialization for session %s; store unavailable", session_id, exc_info=True,
        )
        return outcome

    outcome.sale_id = result.sale_id
    if result.created:
        outcome.outcome = OUTCOME_MATERIALIZED
    return outcome
