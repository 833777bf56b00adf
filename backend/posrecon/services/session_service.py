# Overview: Service-layer operations for payment sessions; encapsulates the lifecycle state machine.

"""
Payment Session Store

WHY: One durable record per card checkout attempt, keyed by (tenant, invoice),
that both the clerk's finalize action and the terminal webhook reconcile
against.

STATE MACHINE:
    pending -> approved
    pending -> declined
No transition out of approved or declined. Re-applying the same terminal
status is a no-op; applying a different one is a Conflict.

SALE STAMP:
sale_id is written with a conditional UPDATE (... WHERE sale_id IS NULL)
so two writers can never both succeed. Once set it never changes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from flask import current_app

from ..errors import Conflict, InvalidInput, NotFound
from ..extensions import db
from ..models import PaymentSession
from ..models.checkout import (
    SESSION_STATUS_APPROVED,
    SESSION_STATUS_DECLINED,
    SESSION_STATUS_PENDING,
    VALID_SESSION_STATUSES,
)
from ..time_utils import new_req_txn_id, utcnow
from .concurrency import lock_for_update, run_with_retry
from .session_events import (
    EVENT_SALE_STAMP_CONFLICT,
    EVENT_SESSION_APPROVED,
    EVENT_SESSION_DECLINED,
    EVENT_SESSION_OPENED,
    EVENT_SESSION_RESENT,
    EVENT_STATUS_CONFLICT,
    append_session_event,
    record_conflict,
)
from .snapshot import read_totals


_STATUS_EVENTS = {
    SESSION_STATUS_APPROVED: EVENT_SESSION_APPROVED,
    SESSION_STATUS_DECLINED: EVENT_SESSION_DECLINED,
}


# =============================================================================
# SESSION CREATION
# =============================================================================

def open_session(
    tenant_id: str,
    invoice_number: str,
    pos_snapshot: dict,
    *,
    req_txn_id: str | None = None,
    started_at: Optional[datetime] = None,
) -> PaymentSession:
    """
    Open a pending payment session for a card checkout.

    Used by the checkout-initiation step. The snapshot is frozen here and is
    the only source the eventual sale is built from.

    Raises:
        InvalidInput: tenant, invoice or snapshot totals missing
        Conflict: a pending session is already open for this invoice
    """
    if not tenant_id:
        raise InvalidInput("tenant_id required", details={"field": "tenant_id"})
    if not invoice_number:
        raise InvalidInput("invoice required", details={"field": "invoice"})
    totals = read_totals(pos_snapshot)

    def _op():
        existing = lock_for_update(_pending_query(tenant_id, invoice_number)).first()
        if existing:
            raise Conflict(
                f"Invoice {invoice_number} already has an open payment session",
                details={"session_id": existing.id, "invoice": invoice_number},
            )

        now = started_at or utcnow()
        session = PaymentSession(
            tenant_id=tenant_id,
            invoice_number=invoice_number,
            req_txn_id=req_txn_id or new_req_txn_id(),
            attempt=1,
            amount_cents=totals.total_cents,
            status=SESSION_STATUS_PENDING,
            pos_snapshot=pos_snapshot,
            started_at=now,
            last_seen_at=now,
        )
        db.session.add(session)
        db.session.flush()

        append_session_event(session, EVENT_SESSION_OPENED, occurred_at=now)
        db.session.commit()
        return session

    return run_with_retry(_op)


def record_resend(tenant_id: str, invoice_number: str) -> PaymentSession:
    """
    Book a re-publish of the same invoice to the terminal.

    Only the bookkeeping: the pending session gets the next attempt number
    and a fresh req_txn_id so the reply to the new charge attempt correlates
    to it. Status stays pending and no new session or sale is created.
    Talking to the terminal is the caller's job.

    Raises:
        InvalidInput: tenant or invoice missing
        NotFound: no pending session for the invoice
    """
    if not tenant_id:
        raise InvalidInput("tenant_id required", details={"field": "tenant_id"})
    if not invoice_number:
        raise InvalidInput("invoice required", details={"field": "invoice"})

    def _op():
        session = lock_for_update(_pending_query(tenant_id, invoice_number)).first()
        if not session:
            raise NotFound(
                f"No pending session for invoice {invoice_number}",
                details={"invoice": invoice_number},
            )

        now = utcnow()
        previous_txn_id = session.req_txn_id
        session.attempt = (session.attempt or 1) + 1
        session.req_txn_id = new_req_txn_id()
        session.last_seen_at = now
        append_session_event(
            session,
            EVENT_SESSION_RESENT,
            sale_id=session.sale_id,
            detail=f"attempt={session.attempt}, previous req_txn_id={previous_txn_id}",
            occurred_at=now,
        )
        db.session.commit()
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Resend booked for invoice %s (tenant %s): attempt %s, req_txn_id %s",
        invoice_number, tenant_id, session.attempt, session.req_txn_id,
    )
    return session


# =============================================================================
# LOOKUPS
# =============================================================================

def _latest_query(tenant_id: str, invoice_number: str):
    return (
        db.session.query(PaymentSession)
        .filter_by(tenant_id=tenant_id, invoice_number=invoice_number)
        .order_by(PaymentSession.started_at.desc(), PaymentSession.id.desc())
    )


def _pending_query(tenant_id: str, invoice_number: str):
    return _latest_query(tenant_id, invoice_number).filter(
        PaymentSession.status == SESSION_STATUS_PENDING
    )


def find_pending(tenant_id: str, invoice_number: str) -> PaymentSession | None:
    """Most recently started pending session for (tenant, invoice), or None."""
    return _pending_query(tenant_id, invoice_number).first()


def find_latest(tenant_id: str, invoice_number: str) -> PaymentSession | None:
    """Most recently started session for (tenant, invoice) in any state."""
    return _latest_query(tenant_id, invoice_number).first()


def find_by_req_txn_id(req_txn_id: str, tenant_id: str | None = None) -> PaymentSession | None:
    query = db.session.query(PaymentSession).filter_by(req_txn_id=req_txn_id)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    return query.order_by(PaymentSession.started_at.desc(), PaymentSession.id.desc()).first()


def find_tenants_for_invoice(invoice_number: str) -> list[str]:
    """Distinct tenants holding a session for this invoice number."""
    rows = (
        db.session.query(PaymentSession.tenant_id)
        .filter_by(invoice_number=invoice_number)
        .distinct()
        .all()
    )
    return [row[0] for row in rows]


# =============================================================================
# SALE STAMP
# =============================================================================

def stamp_sale_id(session_id: int, sale_id: int) -> bool:
    """
    Conditionally write sale_id onto a session inside the caller's transaction.

    Returns True when this call set the value, False when the session already
    carried a sale id (the caller lost a race). Does not commit.
    """
    updated = (
        db.session.query(PaymentSession)
        .filter(PaymentSession.id == session_id, PaymentSession.sale_id.is_(None))
        .update(
            {
                PaymentSession.sale_id: sale_id,
                PaymentSession.version_id: PaymentSession.version_id + 1,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def set_sale_id(tenant_id: str, invoice_number: str, sale_id: int) -> PaymentSession:
    """
    Assign a sale id to the most recent session for (tenant, invoice).

    No-op when the same sale id is already set. A different existing sale id
    is a consistency violation and raises Conflict.

    Raises:
        NotFound: no session for the key
        Conflict: the session is already stamped with another sale
    """
    def _op():
        session = lock_for_update(_latest_query(tenant_id, invoice_number)).first()
        if not session:
            raise NotFound(
                f"No payment session for invoice {invoice_number}",
                details={"invoice": invoice_number},
            )

        if session.sale_id is None:
            session_id = session.id
            if stamp_sale_id(session_id, sale_id):
                db.session.commit()
                db.session.expire_all()
                return db.session.get(PaymentSession, session_id)
            # Someone stamped between our read and our write
            db.session.rollback()
            session = db.session.get(PaymentSession, session_id)

        if session.sale_id == sale_id:
            return session

        _raise_stamp_conflict(session, sale_id)

    return run_with_retry(_op)


def _raise_stamp_conflict(session: PaymentSession, attempted_sale_id: int) -> None:
    session_id = session.id
    existing_sale_id = session.sale_id
    invoice_number = session.invoice_number
    db.session.rollback()

    detail = f"existing sale_id={existing_sale_id}, attempted sale_id={attempted_sale_id}"
    current_app.logger.error(
        "Sale stamp conflict on session %s (invoice %s): %s",
        session_id, invoice_number, detail,
    )
    record_conflict(session_id, EVENT_SALE_STAMP_CONFLICT, sale_id=attempted_sale_id, detail=detail)
    raise Conflict(
        f"Session for invoice {invoice_number} already references sale {existing_sale_id}",
        details={
            "session_id": session_id,
            "existing_sale_id": existing_sale_id,
            "attempted_sale_id": attempted_sale_id,
        },
    )


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def transition_status(
    tenant_id: str,
    invoice_number: str,
    new_status: str,
    raw_payload: Any = None,
    *,
    session_id: int | None = None,
) -> PaymentSession:
    """
    Move a session from pending to approved or declined.

    Targets the most recent session for (tenant, invoice), or the exact
    session when session_id is given (webhook correlated by req_txn_id).
    Always refreshes last_seen_at. A pending target only records the touch.

    Raises:
        InvalidInput: unknown status
        NotFound: no session for the key
        Conflict: session already holds a different terminal status
    """
    if new_status not in VALID_SESSION_STATUSES:
        raise InvalidInput(
            f"Invalid session status: {new_status}. Must be one of {list(VALID_SESSION_STATUSES)}",
            details={"field": "status"},
        )

    def _op():
        if session_id is not None:
            query = db.session.query(PaymentSession).filter_by(id=session_id, tenant_id=tenant_id)
        else:
            query = _latest_query(tenant_id, invoice_number)
        session = lock_for_update(query).first()
        if not session:
            raise NotFound(
                f"No payment session for invoice {invoice_number}",
                details={"invoice": invoice_number},
            )

        now = utcnow()
        session.last_seen_at = now

        if new_status == SESSION_STATUS_PENDING or session.status == new_status:
            if not session.is_terminal:
                session.webhook_payload = raw_payload
            db.session.commit()
            return session

        if session.is_terminal:
            current_status = session.status
            conflicted_id = session.id
            db.session.commit()

            detail = f"recorded={current_status}, received={new_status}"
            current_app.logger.error(
                "Status conflict on session %s (invoice %s): %s",
                conflicted_id, invoice_number, detail,
            )
            record_conflict(conflicted_id, EVENT_STATUS_CONFLICT, detail=detail)
            raise Conflict(
                f"Session for invoice {invoice_number} is already {current_status}",
                details={
                    "session_id": conflicted_id,
                    "current_status": current_status,
                    "attempted_status": new_status,
                },
            )

        if new_status == SESSION_STATUS_DECLINED and session.sale_id is not None:
            # Force-finalized revenue against a declined card; surfaced by `flask recon unreconciled`
            current_app.logger.error(
                "Session %s (invoice %s) declined after sale %s was finalized",
                session.id, invoice_number, session.sale_id,
            )

        session.status = new_status
        session.webhook_payload = raw_payload
        append_session_event(session, _STATUS_EVENTS[new_status], sale_id=session.sale_id, occurred_at=now)
        db.session.commit()
        return session

    return run_with_retry(_op)
