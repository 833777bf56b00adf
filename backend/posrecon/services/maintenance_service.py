# Overview: Operator queries for sessions and deliveries that have not reconciled.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import PaymentSession, WebhookLogEntry
from ..models.checkout import SESSION_STATUS_DECLINED, SESSION_STATUS_PENDING
from ..models.webhooks import TENANT_SOURCE_HEADER
from ..time_utils import utcnow
from .terminal_payload import parse_terminal_payload
from .webhook_log_service import list_orphans
from .webhook_service import resolve_session


def find_unreconciled_sessions(*, older_than_minutes: int = 30, tenant_id: str | None = None) -> list[PaymentSession]:
    """
    Sessions whose sale and terminal outcome disagree.

    - pending with a sale, started before the window: force-finalized and
      never confirmed by the terminal
    - declined with a sale, at any age: revenue recorded against a card the
      terminal declined
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    query = db.session.query(PaymentSession).filter(
        PaymentSession.sale_id.isnot(None),
        or_(
            and_(
                PaymentSession.status == SESSION_STATUS_PENDING,
                PaymentSession.started_at < cutoff,
            ),
            PaymentSession.status == SESSION_STATUS_DECLINED,
        ),
    )
    if tenant_id is not None:
        query = query.filter(PaymentSession.tenant_id == tenant_id)
    return query.order_by(PaymentSession.started_at).all()


def match_orphans(*, limit: int = 100) -> list[tuple[WebhookLogEntry, PaymentSession]]:
    """
    Re-run session matching for orphan deliveries.

    Read-only: the log is never rewritten. Returns (entry, session) pairs for
    orphans that now match a session, typically because the webhook arrived
    before the session was created.
    """
    matches = []
    for entry in list_orphans(limit=limit):
        payload = parse_terminal_payload(entry.payload)
        header_tenant = entry.tenant_id if entry.tenant_source == TENANT_SOURCE_HEADER else None
        session = resolve_session(header_tenant, payload)
        if session is not None:
            matches.append((entry, session))
    return matches
