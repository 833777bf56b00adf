# Overview: Parsing and status normalization for payment-terminal webhook payloads.

"""
Terminal Payload Normalization

WHY: Terminal deliveries are not uniformly shaped. The same field shows up
at the top level, under "data", or under a vendor-specific wrapper, and the
state string varies ("APPROVED", "Approved - 00", "declined_by_issuer").

DESIGN:
- A delivery is parsed once into a TerminalPayload value; everything else
  reads from that value, never from the raw dict.
- Every correlation field has an explicit, ordered alias list.
- Normalization is conservative: anything not clearly approved or declined
  is pending. An unrecognized payload is never treated as a successful payment.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import Unrecognized
from ..models.checkout import (
    SESSION_STATUS_APPROVED,
    SESSION_STATUS_DECLINED,
    SESSION_STATUS_PENDING,
)


PAYLOAD_OK = "ok"
PAYLOAD_UNPARSABLE = "unparsable"

# Ordered alias paths. First non-empty value wins.
STATE_PATHS = (
    ("state",),
    ("data", "state"),
    ("status",),
    ("data", "status"),
    ("transaction", "state"),
)
REQ_TXN_ID_PATHS = (
    ("req_txn_id",),
    ("data", "req_txn_id"),
    ("REQ_TXN_ID",),
    ("payload", "REQ_TXN_ID"),
)
INVOICE_PATHS = (
    ("invoicenumber",),
    ("data", "invoicenumber"),
    ("reference_descriptive_data", "invoicenumber"),
    ("INVOICENUMBER",),
    ("invoice_number",),
)
AMOUNT_PATHS = (
    ("amount",),
    ("data", "amount"),
)
TOTAL_WITH_FEES_PATHS = (
    ("total_with_fees",),
)
TENANT_PATHS = (
    ("tenant_id",),
    ("data", "tenant_id"),
    ("metadata", "tenant_id"),
)
MESSAGE_PATHS = (
    ("message",),
    ("data", "message"),
    ("error",),
    ("state",),
)


@dataclass(frozen=True)
class TerminalPayload:
    """Parsed terminal delivery. kind is PAYLOAD_OK or PAYLOAD_UNPARSABLE."""

    kind: str
    data: dict = field(default_factory=dict)
    raw_text: Optional[str] = None

    @property
    def parse_error(self) -> bool:
        return self.kind == PAYLOAD_UNPARSABLE

    @property
    def problem(self) -> Optional[Unrecognized]:
        """The parse failure as an error value; None for a usable payload."""
        if not self.parse_error:
            return None
        return Unrecognized(
            "Terminal payload is not a JSON object",
            details={"length": len(self.raw_text or "")},
        )

    @property
    def state(self) -> Optional[str]:
        return _first_text(self.data, STATE_PATHS)

    @property
    def req_txn_id(self) -> Optional[str]:
        return _first_text(self.data, REQ_TXN_ID_PATHS)

    @property
    def invoice_number(self) -> Optional[str]:
        return _first_text(self.data, INVOICE_PATHS)

    @property
    def amount(self) -> Optional[str]:
        return _first_text(self.data, AMOUNT_PATHS)

    @property
    def total_with_fees(self) -> Optional[str]:
        return _first_text(self.data, TOTAL_WITH_FEES_PATHS)

    @property
    def tenant_hint(self) -> Optional[str]:
        return _first_text(self.data, TENANT_PATHS)

    @property
    def status(self) -> str:
        return normalize_status(self.data)


def parse_terminal_payload(raw: Any) -> TerminalPayload:
    """
    Parse a raw delivery body.

    Accepts bytes, str, or an already-decoded dict. Malformed JSON and
    non-object JSON (lists, scalars) are tolerated and produce an
    UNPARSABLE payload with empty data.
    """
    if isinstance(raw, dict):
        return TerminalPayload(kind=PAYLOAD_OK, data=raw, raw_text=json.dumps(raw, default=str))

    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    elif raw is None:
        text = ""
    else:
        text = str(raw)

    try:
        decoded = json.loads(text)
    except (TypeError, ValueError):
        return TerminalPayload(kind=PAYLOAD_UNPARSABLE, data={}, raw_text=text)

    if not isinstance(decoded, dict):
        return TerminalPayload(kind=PAYLOAD_UNPARSABLE, data={}, raw_text=text)

    return TerminalPayload(kind=PAYLOAD_OK, data=decoded, raw_text=text)


def normalize_status(payload: Any) -> str:
    """
    Map a terminal payload onto pending / approved / declined.

    Case-insensitive substring match on the first state-like field:
    "approved" -> approved, "declin" -> declined, anything else -> pending.
    """
    if isinstance(payload, TerminalPayload):
        payload = payload.data
    if not isinstance(payload, dict):
        return SESSION_STATUS_PENDING

    state = _first_text(payload, STATE_PATHS)
    if not state:
        return SESSION_STATUS_PENDING

    lowered = state.lower()
    if "approved" in lowered:
        return SESSION_STATUS_APPROVED
    if "declin" in lowered:
        return SESSION_STATUS_DECLINED
    return SESSION_STATUS_PENDING


def read_decline_message(payload: Any) -> str:
    """Human-readable reason for a declined session, or "" when none is present."""
    if not isinstance(payload, dict):
        return ""
    return _first_text(payload, MESSAGE_PATHS) or ""


def _dig(data: dict, path: tuple[str, ...]) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _first_text(data: dict, paths: tuple[tuple[str, ...], ...]) -> Optional[str]:
    for path in paths:
        value = _dig(data, path)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None
