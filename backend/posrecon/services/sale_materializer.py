# Overview: Service-layer operation that turns a checkout snapshot into exactly one sale.

"""
Sale Materializer

WHY: The clerk's finalize action and the terminal's approval webhook both
want a sale to exist for a checkout. They run independently, possibly at the
same instant on different workers. Exactly one Sale must end up referenced by
the session.

ALGORITHM:
1. Session already stamped -> return its sale_id (no write).
2. In ONE transaction: re-read the session under lock, insert the Sale built
   from pos_snapshot, conditionally stamp sale_id (WHERE sale_id IS NULL),
   commit. A crash between insert and stamp rolls both back.
3. Stamp matched no row, or the unique sales.payment_session_id constraint
   fired -> another caller won. Our Sale is rolled back, the winner's
   sale_id is returned and the lost race is recorded in the session ledger.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import NotFound
from ..extensions import db
from ..models import PaymentSession, Sale
from ..models.checkout import PAYMENT_METHOD_CARD
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .session_events import (
    EVENT_SALE_MATERIALIZED,
    EVENT_SALE_RACE_LOST,
    append_session_event,
)
from .session_service import stamp_sale_id
from .snapshot import read_items, read_payment_detail, read_totals


@dataclass(frozen=True)
class MaterializeResult:
    sale_id: int
    created: bool
    race_lost: bool = False


def materialize(tenant_id: str, session: PaymentSession) -> MaterializeResult:
    """
    Ensure exactly one Sale exists for a payment session and return its id.

    Args:
        tenant_id: Tenant performing the call (must own the session)
        session: Session to materialize (a stale copy is fine; it is re-read)

    Returns:
        MaterializeResult with the winning sale id; created is True only for
        the caller whose Sale row was committed.

    Raises:
        NotFound: session missing or owned by another tenant
        InvalidInput: session has no usable pos_snapshot
        Transient: store stayed locked through all retries
    """
    if session.sale_id is not None and session.tenant_id == tenant_id:
        return MaterializeResult(sale_id=session.sale_id, created=False)

    session_id = session.id

    def _op():
        current = lock_for_update(
            db.session.query(PaymentSession).filter_by(id=session_id, tenant_id=tenant_id)
        ).first()
        if not current:
            raise NotFound(
                f"Payment session {session_id} not found",
                details={"session_id": session_id},
            )

        if current.sale_id is not None:
            return MaterializeResult(sale_id=current.sale_id, created=False)

        totals = read_totals(current.pos_snapshot)
        now = utcnow()
        sale = Sale(
            tenant_id=tenant_id,
            payment_session_id=current.id,
            invoice_number=current.invoice_number,
            sale_ts=now,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            payment_method=PAYMENT_METHOD_CARD,
            payment_detail=read_payment_detail(current.pos_snapshot),
            items=read_items(current.pos_snapshot),
        )

        try:
            db.session.add(sale)
            db.session.flush()
            new_sale_id = sale.id

            if not stamp_sale_id(current.id, new_sale_id):
                db.session.rollback()
                return _resolve_lost_race(session_id, new_sale_id)

            append_session_event(current, EVENT_SALE_MATERIALIZED, sale_id=new_sale_id, occurred_at=now)
            db.session.commit()
        except IntegrityError:
            # Another caller's Sale for this session committed first
            db.session.rollback()
            return _resolve_lost_race(session_id, None)

        current_app.logger.info(
            "Materialized sale %s for session %s (invoice %s)",
            new_sale_id, session_id, current.invoice_number,
        )
        return MaterializeResult(sale_id=new_sale_id, created=True)

    return run_with_retry(_op)


def _resolve_lost_race(session_id: int, discarded_sale_id: int | None) -> MaterializeResult:
    db.session.expire_all()
    winner = db.session.get(PaymentSession, session_id)
    if winner is None or winner.sale_id is None:
        # Unique constraint fired but the winner has not stamped yet; the
        # winner's own transaction covers insert+stamp, so re-read after it.
        winner_sale = db.session.query(Sale).filter_by(payment_session_id=session_id).first()
        if winner_sale is None:
            raise NotFound(
                f"Payment session {session_id} not found",
                details={"session_id": session_id},
            )
        winner_sale_id = winner_sale.id
    else:
        winner_sale_id = winner.sale_id

    current_app.logger.warning(
        "Lost materialize race on session %s: kept sale %s, rolled back sale %s",
        session_id, winner_sale_id, discarded_sale_id,
    )
    if winner is not None:
        append_session_event(
            winner,
            EVENT_SALE_RACE_LOST,
            sale_id=winner_sale_id,
            detail=f"rolled back sale_id={discarded_sale_id}",
        )
        db.session.commit()
    return MaterializeResult(sale_id=winner_sale_id, created=False, race_lost=True)
