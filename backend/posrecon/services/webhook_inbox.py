# Overview: Durable inbox for acknowledged webhook deliveries; spool, claim, process and recover.

"""
Webhook Inbox

WHY: The terminal gets its 200 before the delivery is processed and has no
reason to send it again. The route spools the raw body here first; the
background job claims the row, runs the delivery pipeline and marks it
processed. Rows left behind by a crash or a shutdown are drained again on
the next startup (or by `flask recon drain-inbox`).

CLAIM:
A conditional UPDATE moves a row to processing; only the caller whose UPDATE
matched owns it. A processing row whose claim is older than
WEBHOOK_INBOX_CLAIM_TIMEOUT_SECONDS was abandoned by a dead worker and may be
claimed again. Rows that crashed the pipeline WEBHOOK_INBOX_MAX_ATTEMPTS
times stay failed for an operator.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from flask import current_app
from sqlalchemy import and_, func, inspect, or_
from sqlalchemy.exc import SQLAlchemyError

from ..errors import Transient
from ..extensions import db, webhook_dispatcher
from ..models import WebhookInboxEntry
from ..models.webhooks import (
    INBOX_BACKLOG_STATUSES,
    INBOX_STATUS_FAILED,
    INBOX_STATUS_PROCESSED,
    INBOX_STATUS_PROCESSING,
    INBOX_STATUS_QUEUED,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .webhook_service import DeliveryOutcome, process_delivery


def enqueue_delivery(
    raw_body: Any,
    header_tenant: str | None = None,
    received_at: Optional[datetime] = None,
) -> int:
    """Spool one delivery in its own transaction and return the inbox row id."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    def _op():
        entry = WebhookInboxEntry(
            raw_body=bytes(raw_body or b""),
            header_tenant=header_tenant[:64] if header_tenant else None,
            received_at=received_at or utcnow(),
            status=INBOX_STATUS_QUEUED,
            attempt_count=0,
        )
        db.session.add(entry)
        db.session.commit()
        return entry.id

    return run_with_retry(_op)


def _claimable(now: datetime):
    lease = timedelta(seconds=current_app.config.get("WEBHOOK_INBOX_CLAIM_TIMEOUT_SECONDS", 60))
    max_attempts = current_app.config.get("WEBHOOK_INBOX_MAX_ATTEMPTS", 5)
    return and_(
        WebhookInboxEntry.attempt_count < max_attempts,
        or_(
            WebhookInboxEntry.status.in_((INBOX_STATUS_QUEUED, INBOX_STATUS_FAILED)),
            and_(
                WebhookInboxEntry.status == INBOX_STATUS_PROCESSING,
                WebhookInboxEntry.claimed_at < now - lease,
            ),
        ),
    )


def claim_entry(entry_id: int) -> bool:
    """Take ownership of an inbox row. False when another worker holds it or it is done."""
    def _op():
        now = utcnow()
        updated = (
            db.session.query(WebhookInboxEntry)
            .filter(WebhookInboxEntry.id == entry_id, _claimable(now))
            .update(
                {
                    WebhookInboxEntry.status: INBOX_STATUS_PROCESSING,
                    WebhookInboxEntry.claimed_at: now,
                    WebhookInboxEntry.attempt_count: WebhookInboxEntry.attempt_count + 1,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
        return updated == 1

    return run_with_retry(_op)


def _finish(entry_id: int, status: str, error: str | None = None) -> None:
    def _op():
        db.session.query(WebhookInboxEntry).filter_by(id=entry_id).update(
            {
                WebhookInboxEntry.status: status,
                WebhookInboxEntry.processed_at: utcnow() if status == INBOX_STATUS_PROCESSED else None,
                WebhookInboxEntry.error_message: error[:2000] if error else None,
            },
            synchronize_session=False,
        )
        db.session.commit()

    run_with_retry(_op)


def process_inbox_entry(entry_id: int) -> DeliveryOutcome | None:
    """
    Claim one spooled delivery and run it through the webhook pipeline.

    Returns None when the row was not claimable or the pipeline crashed; a
    crashed row is marked failed and picked up by the next drain.
    """
    if not claim_entry(entry_id):
        current_app.logger.debug("Inbox entry %s already claimed or processed", entry_id)
        return None

    entry = db.session.get(WebhookInboxEntry, entry_id)
    raw_body = bytes(entry.raw_body or b"")
    header_tenant = entry.header_tenant
    received_at = entry.received_at
    attempt = entry.attempt_count

    try:
        outcome = process_delivery(raw_body, header_tenant, received_at, inbox_id=entry_id)
    except Exception as exc:
        db.session.rollback()
        max_attempts = current_app.config.get("WEBHOOK_INBOX_MAX_ATTEMPTS", 5)
        if attempt >= max_attempts:
            current_app.logger.exception(
                "Inbox entry %s failed on attempt %d; giving up", entry_id, attempt,
            )
        else:
            current_app.logger.exception(
                "Inbox entry %s failed on attempt %d; left for the next drain", entry_id, attempt,
            )
        _finish(entry_id, INBOX_STATUS_FAILED, error=f"{type(exc).__name__}: {exc}")
        return None

    _finish(entry_id, INBOX_STATUS_PROCESSED)
    return outcome


def claimable_entry_ids(*, limit: int = 500) -> list[int]:
    """Rows a drain would pick up, oldest delivery first."""
    rows = (
        db.session.query(WebhookInboxEntry.id)
        .filter(_claimable(utcnow()))
        .order_by(WebhookInboxEntry.received_at, WebhookInboxEntry.id)
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def drain_inbox(*, limit: int = 500, background: bool = True) -> int:
    """Hand every claimable row to the dispatcher (or run it here). Returns the count."""
    entry_ids = claimable_entry_ids(limit=limit)
    for entry_id in entry_ids:
        if background:
            webhook_dispatcher.submit(process_inbox_entry, entry_id)
        else:
            process_inbox_entry(entry_id)
    return len(entry_ids)


def recover_on_startup(app) -> int:
    """
    Re-drain deliveries a previous process acknowledged but never finished.

    Skipped while the inbox table does not exist yet (fresh database, or
    before `flask db upgrade`).
    """
    with app.app_context():
        try:
            if not inspect(db.engine).has_table(WebhookInboxEntry.__tablename__):
                app.logger.debug("Webhook inbox table missing; recovery skipped")
                return 0
            count = drain_inbox()
        except (Transient, SQLAlchemyError):
            db.session.rollback()
            app.logger.warning("Webhook inbox recovery failed", exc_info=True)
            return 0
        finally:
            db.session.remove()

    if count:
        app.logger.info("Recovered %d unprocessed webhook deliveries from the inbox", count)
    return count


def inbox_backlog() -> dict:
    """Row counts per unfinished status."""
    counts = {status: 0 for status in INBOX_BACKLOG_STATUSES}
    rows = (
        db.session.query(WebhookInboxEntry.status, func.count(WebhookInboxEntry.id))
        .filter(WebhookInboxEntry.status.in_(INBOX_BACKLOG_STATUSES))
        .group_by(WebhookInboxEntry.status)
        .all()
    )
    counts.update({status: count for status, count in rows})
    return counts


def list_backlog(*, limit: int = 50) -> list[WebhookInboxEntry]:
    return (
        db.session.query(WebhookInboxEntry)
        .filter(WebhookInboxEntry.status.in_(INBOX_BACKLOG_STATUSES))
        .order_by(WebhookInboxEntry.received_at, WebhookInboxEntry.id)
        .limit(limit)
        .all()
    )
