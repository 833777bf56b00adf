from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SessionEvent(db.Model):
    """
    Append-only reconciliation ledger for payment sessions.

    Status transitions, sale stamps, lost races and conflicts land here so
    they can be counted and audited after the fact.
    """
    __tablename__ = "payment_session_events"
    __table_args__ = (
        db.Index("ix_payment_session_events_type_occurred", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("payment_sessions.id"), nullable=False, index=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)

    event_type = db.Column(db.String(64), nullable=False)
    sale_id = db.Column(db.Integer, nullable=True)
    detail = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "invoice_number": self.invoice_number,
            "event_type": self.event_type,
            "sale_id": self.sale_id,
            "detail": self.detail,
            "occurred_at": to_utc_z(self.occurred_at),
        }
