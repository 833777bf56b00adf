# Overview: Append-only audit log of raw payment-terminal deliveries.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import WebhookLogEntry
from ..models.webhooks import TENANT_SOURCE_NONE
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .terminal_payload import TerminalPayload


def append_webhook_log(
    payload: TerminalPayload,
    *,
    tenant_id: str | None = None,
    tenant_source: str = TENANT_SOURCE_NONE,
    matched_session_id: int | None = None,
    received_at: Optional[datetime] = None,
    inbox_id: int | None = None,
) -> WebhookLogEntry:
    """
    Durably record one terminal delivery in its own transaction.

    Committed before any interpretation of the delivery, so a failure in
    status handling or sale creation never loses the record. A delivery
    replayed from the inbox reuses the entry already written for it.
    """
    def _op():
        if inbox_id is not None:
            existing = db.session.query(WebhookLogEntry).filter_by(inbox_id=inbox_id).first()
            if existing is not None:
                return existing

        entry = WebhookLogEntry(
            tenant_id=tenant_id,
            tenant_source=tenant_source,
            req_txn_id=_clip(payload.req_txn_id, 64),
            invoice_number=_clip(payload.invoice_number, 64),
            state=_clip(payload.state, 128),
            normalized_status=payload.status,
            amount=_clip(payload.amount, 32),
            total_with_fees=_clip(payload.total_with_fees, 32),
            payload=payload.data,
            raw_body=payload.raw_text,
            parse_error=payload.parse_error,
            matched_session_id=matched_session_id,
            received_at=received_at or utcnow(),
            inbox_id=inbox_id,
        )
        db.session.add(entry)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def list_orphans(*, limit: int = 100) -> list[WebhookLogEntry]:
    """Deliveries that matched no session, newest first."""
    return (
        db.session.query(WebhookLogEntry)
        .filter(WebhookLogEntry.matched_session_id.is_(None))
        .order_by(WebhookLogEntry.received_at.desc(), WebhookLogEntry.id.desc())
        .limit(limit)
        .all()
    )


def list_for_invoice(invoice_number: str) -> list[WebhookLogEntry]:
    return (
        db.session.query(WebhookLogEntry)
        .filter_by(invoice_number=invoice_number)
        .order_by(WebhookLogEntry.received_at, WebhookLogEntry.id)
        .all()
    )


def _clip(value: str | None, length: int) -> str | None:
    if value is None:
        return None
    return value[:length]
