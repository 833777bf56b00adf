# Overview: Error taxonomy shared by the reconciliation services and routes.

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for checkout reconciliation errors."""

    code = "reconciliation_error"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": str(self), "details": self.details}


class NotFound(ReconciliationError):
    """No matching (pending) session for the tenant and invoice."""

    code = "no_pending_session"
    http_status = 404


class InvalidInput(ReconciliationError):
    """400-level input problem: missing or malformed required field."""

    code = "missing_field"
    http_status = 400


class Conflict(ReconciliationError):
    """
    Two different sale ids or terminal statuses raced onto one session.

    Never resolved by last-write-wins; callers log at ERROR and the session
    ledger records the attempt.
    """

    code = "conflict"
    http_status = 409


class Transient(ReconciliationError):
    """Transactional store unavailable (locks exhausted, connection lost)."""

    code = "store_unavailable"
    http_status = 503


class Unrecognized(ReconciliationError):
    """Terminal payload could not be parsed. Degrades to pending, never escalated."""

    code = "unrecognized_payload"
    http_status = 400
