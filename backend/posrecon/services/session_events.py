# Overview: Service-layer operations for the payment-session reconciliation ledger.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import PaymentSession, SessionEvent
from ..time_utils import utcnow
"""
Reconciliation Ledger Invariants

- Append-only. No updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record,
  except conflict events, which are committed on their own because the
  change they describe was refused.
- occurred_at is server time at the moment of recording.
"""


EVENT_SESSION_OPENED = "session.opened"
EVENT_SESSION_APPROVED = "session.approved"
EVENT_SESSION_DECLINED = "session.declined"
EVENT_SESSION_RESENT = "session.resent"
EVENT_STATUS_CONFLICT = "session.status_conflict"
EVENT_SALE_MATERIALIZED = "sale.materialized"
EVENT_SALE_RACE_LOST = "sale.race_lost"
EVENT_SALE_STAMP_CONFLICT = "sale.stamp_conflict"

CONFLICT_EVENT_TYPES = (EVENT_STATUS_CONFLICT, EVENT_SALE_STAMP_CONFLICT)


def append_session_event(
    session: PaymentSession,
    event_type: str,
    *,
    sale_id: int | None = None,
    detail: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> SessionEvent:
    """Append an event for a session. Flushes; the caller owns the commit."""
    ev = SessionEvent(
        session_id=session.id,
        tenant_id=session.tenant_id,
        invoice_number=session.invoice_number,
        event_type=event_type,
        sale_id=sale_id,
        detail=detail,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def record_conflict(session_id: int, event_type: str, *, sale_id: int | None = None, detail: str) -> None:
    """
    Commit a conflict event in its own transaction.

    Called after the refused change has been rolled back, so the session is
    re-read rather than trusted from the caller.
    """
    session = db.session.get(PaymentSession, session_id)
    if session is None:
        return
    append_session_event(session, event_type, sale_id=sale_id, detail=detail)
    db.session.commit()


def list_session_events(session_id: int) -> list[SessionEvent]:
    return (
        db.session.query(SessionEvent)
        .filter_by(session_id=session_id)
        .order_by(SessionEvent.occurred_at, SessionEvent.id)
        .all()
    )


def count_conflicts(tenant_id: str | None = None) -> int:
    query = db.session.query(SessionEvent).filter(SessionEvent.event_type.in_(CONFLICT_EVENT_TYPES))
    if tenant_id is not None:
        query = query.filter(SessionEvent.tenant_id == tenant_id)
    return query.count()


def list_conflicts(*, limit: int = 50) -> list[SessionEvent]:
    return (
        db.session.query(SessionEvent)
        .filter(SessionEvent.event_type.in_(CONFLICT_EVENT_TYPES))
        .order_by(SessionEvent.occurred_at.desc(), SessionEvent.id.desc())
        .limit(limit)
        .all()
    )
