from .checkout import PaymentSession, Sale
from .webhooks import WebhookInboxEntry, WebhookLogEntry
from .events import SessionEvent

__all__ = [
    'PaymentSession', 'Sale',
    'WebhookLogEntry', 'WebhookInboxEntry',
    'SessionEvent',
]
