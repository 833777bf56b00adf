# Overview: Reading totals and line items out of a checkout snapshot.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from ..errors import InvalidInput


# Snapshot totals are decimal currency units ({"total": 42.5}); sales store cents.
CENT = Decimal("0.01")


@dataclass(frozen=True)
class SnapshotTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


def to_cents(value: Any, field_name: str) -> int:
    """
    Convert a currency amount to integer cents.

    Goes through str() so 19.99 (float) becomes 1999, not 1998.
    Booleans and non-numeric strings are rejected.
    """
    if isinstance(value, bool):
        raise InvalidInput(f"{field_name} must be a number", details={"field": field_name})
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{field_name} must be a number", details={"field": field_name})
    if not amount.is_finite():
        raise InvalidInput(f"{field_name} must be a finite number", details={"field": field_name})
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def read_totals(snapshot: Any) -> SnapshotTotals:
    """
    Extract totals from a checkout snapshot.

    totals.total is required; subtotal, discount and tax default to 0.
    """
    if not isinstance(snapshot, dict):
        raise InvalidInput("pos_snapshot is missing", details={"field": "pos_snapshot"})

    totals = snapshot.get("totals")
    if not isinstance(totals, dict) or totals.get("total") is None:
        raise InvalidInput("pos_snapshot.totals.total is required", details={"field": "totals.total"})

    return SnapshotTotals(
        subtotal_cents=to_cents(totals.get("subtotal") or 0, "totals.subtotal"),
        discount_cents=to_cents(totals.get("discount") or 0, "totals.discount"),
        tax_cents=to_cents(totals.get("tax") or 0, "totals.tax"),
        total_cents=to_cents(totals["total"], "totals.total"),
    )


def read_items(snapshot: Any) -> list:
    if not isinstance(snapshot, dict):
        return []
    items = snapshot.get("items")
    return list(items) if isinstance(items, list) else []


def read_payment_detail(snapshot: Any):
    if not isinstance(snapshot, dict):
        return None
    return snapshot.get("payment")
