from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SESSION_STATUS_PENDING = "pending"
SESSION_STATUS_APPROVED = "approved"
SESSION_STATUS_DECLINED = "declined"

TERMINAL_SESSION_STATUSES = (SESSION_STATUS_APPROVED, SESSION_STATUS_DECLINED)
VALID_SESSION_STATUSES = (SESSION_STATUS_PENDING,) + TERMINAL_SESSION_STATUSES


class PaymentSession(db.Model):
    """
    One row per card checkout attempt.

    WHY: The clerk can finalize before the terminal confirms, and the terminal
    webhook can arrive in any order relative to that. This row is the single
    place both paths agree on.

    INVARIANTS:
    - status moves only pending -> approved or pending -> declined
    - sale_id, once set, never changes and never reverts to NULL
    - pos_snapshot is written at initiation and never updated
    """
    __tablename__ = "payment_sessions"
    __table_args__ = (
        db.Index("ix_payment_sessions_tenant_invoice_started", "tenant_id", "invoice_number", "started_at"),
        db.Index("ix_payment_sessions_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    # Terminal-assigned correlation id (REQ_TXN_ID on the wire)
    req_txn_id = db.Column(db.String(64), nullable=False, index=True)
    attempt = db.Column(db.Integer, nullable=False, default=1)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_PENDING, index=True)

    # Materialized sale (no FK: sales.payment_session_id points back here)
    sale_id = db.Column(db.Integer, nullable=True, index=True)

    pos_snapshot = db.Column(db.JSON, nullable=True)
    webhook_payload = db.Column(db.JSON, nullable=True)

    started_at = db.Column(db.DateTime, nullable=False, index=True)
    last_seen_at = db.Column(db.DateTime, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "invoice_number": self.invoice_number,
            "req_txn_id": self.req_txn_id,
            "attempt": self.attempt,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "sale_id": self.sale_id,
            "started_at": to_utc_z(self.started_at),
            "last_seen_at": to_utc_z(self.last_seen_at),
        }


PAYMENT_METHOD_CARD = "card"


class Sale(db.Model):
    """
    Completed card sale, written only by the sale materializer.

    IMMUTABLE: never updated or deleted once committed. payment_session_id is
    unique so the store itself refuses a second sale for one checkout attempt.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("payment_session_id", name="uq_sales_payment_session"),
        db.Index("ix_sales_tenant_sale_ts", "tenant_id", "sale_ts"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    payment_session_id = db.Column(db.Integer, db.ForeignKey("payment_sessions.id"), nullable=False)
    invoice_number = db.Column(db.String(64), nullable=False, index=True)

    sale_ts = db.Column(db.DateTime, nullable=False)

    # All amounts in cents, carried verbatim from the checkout snapshot
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False, default=PAYMENT_METHOD_CARD)
    payment_detail = db.Column(db.JSON, nullable=True)
    items = db.Column(db.JSON, nullable=False)

    payment_session = db.relationship("PaymentSession", foreign_keys=[payment_session_id])

    def to_dict(self) -> dict:
        return {
            "sale_id": self.id,
            "tenant_id": self.tenant_id,
            "payment_session_id": self.payment_session_id,
            "invoice_number": self.invoice_number,
            "sale_ts": to_utc_z(self.sale_ts),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_detail": self.payment_detail,
            "items": self.items,
        }
