# Overview: Read-only checkout status and sales queries for the POS client.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from ..extensions import db
from ..models import Sale
from ..models.checkout import SESSION_STATUS_APPROVED, SESSION_STATUS_DECLINED, SESSION_STATUS_PENDING
from ..time_utils import utcnow
from .session_service import find_latest
from .terminal_payload import read_decline_message


SALES_LIST_LIMIT = 200


def get_checkout_status(tenant_id: str, invoice_number: str) -> dict:
    """
    Poll view of a checkout.

    WHY: The POS waits on the terminal by polling. An unknown invoice reads
    as pending so a poll that outruns session creation does not error.
    """
    session = find_latest(tenant_id, invoice_number)
    if session is None or session.status == SESSION_STATUS_PENDING:
        body = {"ok": True, "status": SESSION_STATUS_PENDING}
        if session is not None and session.sale_id is not None:
            body["sale_id"] = session.sale_id
        return body

    if session.status == SESSION_STATUS_APPROVED:
        body = {"ok": True, "status": SESSION_STATUS_APPROVED}
        if session.sale_id is not None:
            body["sale_id"] = session.sale_id
        return body

    if session.status == SESSION_STATUS_DECLINED:
        return {
            "ok": True,
            "status": SESSION_STATUS_DECLINED,
            "message": read_decline_message(session.webhook_payload),
        }

    return {"ok": True, "status": str(session.status or SESSION_STATUS_PENDING)}


def list_sales(
    tenant_id: str,
    *,
    preset: str | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> list[Sale]:
    """
    Tenant sales, newest first.

    preset="today" (or no bounds at all) -> [today 00:00, tomorrow 00:00)
    otherwise -> start <= sale_ts <= end, either bound optional.
    """
    query = db.session.query(Sale).filter(Sale.tenant_id == tenant_id)

    if (preset or "").lower() == "today" or (start is None and end is None):
        today = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
        query = query.filter(Sale.sale_ts >= today, Sale.sale_ts < today + timedelta(days=1))
    else:
        if start is not None:
            query = query.filter(Sale.sale_ts >= start)
        if end is not None:
            query = query.filter(Sale.sale_ts <= end)

    return query.order_by(Sale.sale_ts.desc(), Sale.id.desc()).limit(SALES_LIST_LIMIT).all()
