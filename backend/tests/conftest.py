"""
Pytest fixtures for posrecon backend tests.

Provides test database setup, tenant fixtures, payment-session factories and
the test client. Webhook deliveries run inline so route tests can assert on
their effects directly.
"""

import pytest
from posrecon import create_app
from posrecon.extensions import db
from posrecon.models import PaymentSession, Sale, WebhookLogEntry
from posrecon.services import session_service


TENANT_A = "3f0c9a52-tenant-a"
TENANT_B = "9b7e1d04-tenant-b"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "posrecon-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WEBHOOK_PROCESS_INLINE': True,
        'DB_RETRY_BACKOFF_SECONDS': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


def make_snapshot(total=42.50, *, subtotal=None, discount=0, tax=0, items=None, payment="card:42.50"):
    """Checkout snapshot as captured at initiation."""
    return {
        "items": items if items is not None else [
            {"sku": "TEE-BLK-M", "name": "Black tee (M)", "qty": 1, "price": total},
        ],
        "totals": {
            "subtotal": subtotal if subtotal is not None else total,
            "discount": discount,
            "tax": tax,
            "total": total,
        },
        "payment": payment,
    }


@pytest.fixture(scope='function')
def open_session(db_session):
    """Factory: open a pending payment session."""
    def _open(invoice="INV-1001", tenant_id=TENANT_A, snapshot=None, req_txn_id=None):
        return session_service.open_session(
            tenant_id,
            invoice,
            snapshot if snapshot is not None else make_snapshot(),
            req_txn_id=req_txn_id,
        )
    return _open


def reload_session(session_id: int) -> PaymentSession:
    """Re-read a session after work committed on another DB session."""
    db.session.expire_all()
    return db.session.get(PaymentSession, session_id)


def sales_for(session_id: int) -> list[Sale]:
    db.session.expire_all()
    return db.session.query(Sale).filter_by(payment_session_id=session_id).all()


def webhook_log_count() -> int:
    db.session.expire_all()
    return db.session.query(WebhookLogEntry).count()


def tenant_headers(tenant_id: str = TENANT_A) -> dict:
    """Helper to create tenant headers."""
    return {'X-Tenant-Id': tenant_id}
