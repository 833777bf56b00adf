from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TENANT_SOURCE_HEADER = "header"
TENANT_SOURCE_SESSION = "session"
TENANT_SOURCE_PAYLOAD = "payload"
TENANT_SOURCE_NONE = "none"


class WebhookLogEntry(db.Model):
    """
    Raw payment-terminal delivery, exactly as received.

    IMMUTABLE: Append-only. This is the only forensic record of what the
    terminal actually sent, so it is written before any interpretation and
    kept even when no session matches (orphan events).

    tenant_id is advisory: it comes from the matched session, the request
    header, or payload content, in that order, and may be NULL.
    """
    __tablename__ = "terminal_webhook_log"
    __table_args__ = (
        db.Index("ix_terminal_webhook_log_invoice", "invoice_number"),
        db.Index("ix_terminal_webhook_log_received", "received_at"),
        db.UniqueConstraint("inbox_id", name="uq_terminal_webhook_log_inbox_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=True, index=True)
    tenant_source = db.Column(db.String(16), nullable=False, default=TENANT_SOURCE_NONE)

    req_txn_id = db.Column(db.String(64), nullable=True, index=True)
    invoice_number = db.Column(db.String(64), nullable=True)

    state = db.Column(db.String(128), nullable=True)  # raw terminal state, untouched
    normalized_status = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.String(32), nullable=True)
    total_with_fees = db.Column(db.String(32), nullable=True)

    payload = db.Column(db.JSON, nullable=False)
    raw_body = db.Column(db.Text, nullable=True)
    parse_error = db.Column(db.Boolean, nullable=False, default=False)

    # NULL marks an orphan event
    matched_session_id = db.Column(db.Integer, nullable=True, index=True)
    received_at = db.Column(db.DateTime, nullable=False)

    # Spooled delivery this entry was written for; one entry per inbox row
    inbox_id = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "tenant_source": self.tenant_source,
            "req_txn_id": self.req_txn_id,
            "invoice_number": self.invoice_number,
            "state": self.state,
            "normalized_status": self.normalized_status,
            "amount": self.amount,
            "total_with_fees": self.total_with_fees,
            "parse_error": self.parse_error,
            "matched_session_id": self.matched_session_id,
            "inbox_id": self.inbox_id,
            "received_at": to_utc_z(self.received_at),
        }


INBOX_STATUS_QUEUED = "queued"
INBOX_STATUS_PROCESSING = "processing"
INBOX_STATUS_PROCESSED = "processed"
INBOX_STATUS_FAILED = "failed"

INBOX_BACKLOG_STATUSES = (INBOX_STATUS_QUEUED, INBOX_STATUS_PROCESSING, INBOX_STATUS_FAILED)


class WebhookInboxEntry(db.Model):
    """
    Acknowledged terminal delivery waiting to be processed.

    Written by the webhook route before it answers the terminal, so an
    accepted delivery survives a process restart. Workers claim a row with a
    conditional UPDATE, run the delivery pipeline and mark it processed.

    STATUS:
    - queued: accepted, not yet picked up
    - processing: claimed at claimed_at; reclaimable once the claim lease expires
    - processed: pipeline ran to completion (business failures included)
    - failed: pipeline crashed; re-drained until attempt_count hits the limit
    """
    __tablename__ = "terminal_webhook_inbox"
    __table_args__ = (
        db.Index("ix_terminal_webhook_inbox_status_received", "status", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    raw_body = db.Column(db.LargeBinary, nullable=False, default=b"")
    header_tenant = db.Column(db.String(64), nullable=True)
    received_at = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INBOX_STATUS_QUEUED)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    claimed_at = db.Column(db.DateTime, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "header_tenant": self.header_tenant,
            "received_at": to_utc_z(self.received_at),
            "status": self.status,
            "attempt_count": self.attempt_count,
            "claimed_at": to_utc_z(self.claimed_at),
            "processed_at": to_utc_z(self.processed_at),
            "error_message": self.error_message,
        }
