# Overview: Pytest coverage for the durable webhook inbox and restart recovery.

"""
Webhook Inbox Tests

- The route spools every delivery before acknowledging it
- Claims: one owner per row, stale claims are reclaimable
- Replays never log a delivery twice or create a second sale
- Crashed rows are re-drained until the attempt limit
- Deliveries acknowledged by a process that died are recovered on startup
"""

import os
import subprocess
import sys
import tempfile
import textwrap
import unittest
from datetime import timedelta

import posrecon
from posrecon import create_app
from posrecon.errors import Transient
from posrecon.extensions import db
from posrecon.models import PaymentSession, Sale, WebhookInboxEntry, WebhookLogEntry
from posrecon.services import session_service, webhook_inbox, webhook_service
from posrecon.time_utils import utcnow

from conftest import TENANT_A, make_snapshot, reload_session, sales_for, webhook_log_count


WEBHOOK_URL = '/api/webhooks/payment-terminal'
APPROVED = b'{"state": "approved", "invoicenumber": "INV-1001"}'


def inbox_rows() -> list[WebhookInboxEntry]:
    db.session.expire_all()
    return db.session.query(WebhookInboxEntry).order_by(WebhookInboxEntry.id).all()


def set_row(entry_id: int, **values) -> None:
    db.session.query(WebhookInboxEntry).filter_by(id=entry_id).update(values, synchronize_session=False)
    db.session.commit()


class TestSpooling:

    def test_route_spools_then_processes(self, client, open_session):
        session = open_session("INV-1001")

        response = client.post(WEBHOOK_URL, data=APPROVED, content_type='application/json',
                               headers={'X-Tenant-Id': TENANT_A})

        assert response.status_code == 200
        rows = inbox_rows()
        assert len(rows) == 1
        assert rows[0].status == 'processed'
        assert rows[0].attempt_count == 1
        assert rows[0].header_tenant == TENANT_A
        assert bytes(rows[0].raw_body) == APPROVED

        entry = db.session.query(WebhookLogEntry).one()
        assert entry.inbox_id == rows[0].id
        assert reload_session(session.id).status == 'approved'

    def test_spool_failure_still_processes_from_memory(self, client, open_session, monkeypatch):
        from posrecon.routes import webhooks as webhook_routes

        def _unavailable(*args, **kwargs):
            raise Transient("store unavailable")

        monkeypatch.setattr(webhook_routes, 'enqueue_delivery', _unavailable)
        session = open_session("INV-1001")

        response = client.post(WEBHOOK_URL, data=APPROVED, content_type='application/json')

        assert response.status_code == 200
        assert inbox_rows() == []
        assert webhook_log_count() == 1
        assert reload_session(session.id).status == 'approved'


class TestClaims:

    def test_claimed_entry_is_not_claimed_twice(self, db_session):
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)

        assert webhook_inbox.claim_entry(entry_id) is True
        assert webhook_inbox.claim_entry(entry_id) is False
        assert webhook_inbox.claimable_entry_ids() == []

    def test_stale_claim_is_reclaimed(self, db_session):
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)
        set_row(entry_id, status='processing', attempt_count=1,
                claimed_at=utcnow() - timedelta(minutes=5))

        assert webhook_inbox.claimable_entry_ids() == [entry_id]
        assert webhook_inbox.claim_entry(entry_id) is True
        assert inbox_rows()[0].attempt_count == 2

    def test_processed_entry_is_never_claimed(self, open_session):
        open_session("INV-1001")
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)
        webhook_inbox.process_inbox_entry(entry_id)

        assert webhook_inbox.process_inbox_entry(entry_id) is None
        assert webhook_log_count() == 1


class TestReplay:

    def test_replay_reuses_log_entry_and_sale(self, open_session):
        session = open_session("INV-1001")
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)
        first = webhook_inbox.process_inbox_entry(entry_id)

        # A worker that died after finishing the pipeline but before marking the row
        set_row(entry_id, status='processing', claimed_at=utcnow() - timedelta(minutes=5))
        second = webhook_inbox.process_inbox_entry(entry_id)

        assert second.log_id == first.log_id
        assert second.sale_id == first.sale_id
        assert webhook_log_count() == 1
        assert len(sales_for(session.id)) == 1
        assert inbox_rows()[0].status == 'processed'


class TestFailedEntries:

    def test_crash_marks_failed_and_redrains_until_limit(self, app, open_session, monkeypatch):
        open_session("INV-1001")

        def _boom(*args, **kwargs):
            raise RuntimeError("pipeline exploded")

        monkeypatch.setattr(webhook_inbox, 'process_delivery', _boom)
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)

        assert webhook_inbox.process_inbox_entry(entry_id) is None
        row = inbox_rows()[0]
        assert row.status == 'failed'
        assert row.error_message == 'RuntimeError: pipeline exploded'

        while webhook_inbox.drain_inbox(background=False):
            pass

        row = inbox_rows()[0]
        assert row.status == 'failed'
        assert row.attempt_count == app.config['WEBHOOK_INBOX_MAX_ATTEMPTS']
        assert webhook_inbox.claimable_entry_ids() == []

    def test_log_write_failure_keeps_row_for_next_drain(self, open_session, monkeypatch):
        session = open_session("INV-1001")

        def _unavailable(*args, **kwargs):
            raise Transient("store unavailable")

        monkeypatch.setattr(webhook_service, 'append_webhook_log', _unavailable)
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)
        webhook_inbox.process_inbox_entry(entry_id)

        assert inbox_rows()[0].status == 'failed'
        assert webhook_log_count() == 0
        assert reload_session(session.id).status == 'pending'

        monkeypatch.undo()
        assert webhook_inbox.drain_inbox(background=False) == 1

        assert inbox_rows()[0].status == 'processed'
        assert webhook_log_count() == 1
        assert reload_session(session.id).status == 'approved'


class TestRecovery:

    def test_recover_on_startup_drains_backlog(self, app, open_session):
        session = open_session("INV-1001")
        for _ in range(3):
            webhook_inbox.enqueue_delivery(APPROVED, TENANT_A)

        assert webhook_inbox.recover_on_startup(app) == 3

        assert [row.status for row in inbox_rows()] == ['processed'] * 3
        assert webhook_log_count() == 3
        assert reload_session(session.id).status == 'approved'
        assert len(sales_for(session.id)) == 1

    def test_backlog_counts(self, db_session):
        first = webhook_inbox.enqueue_delivery(APPROVED)
        webhook_inbox.enqueue_delivery(APPROVED)
        set_row(first, status='failed', attempt_count=1)

        assert webhook_inbox.inbox_backlog() == {'queued': 1, 'processing': 0, 'failed': 1}


class TestInboxCommands:

    def test_drain_inbox_command(self, app, open_session):
        session = open_session("INV-1001")
        webhook_inbox.enqueue_delivery(APPROVED)
        webhook_inbox.enqueue_delivery(APPROVED)

        result = app.test_cli_runner().invoke(args=['recon', 'drain-inbox'])

        assert result.exit_code == 0
        assert "PASS Drained 2 inbox delivery(ies)." in result.output
        assert reload_session(session.id).status == 'approved'

    def test_inbox_command_lists_backlog(self, app, db_session):
        entry_id = webhook_inbox.enqueue_delivery(APPROVED)
        set_row(entry_id, status='failed', attempt_count=2, error_message='OperationalError: locked')

        result = app.test_cli_runner().invoke(args=['recon', 'inbox'])

        assert result.exit_code == 0
        assert "OperationalError: locked" in result.output
        assert "Backlog: 0 queued, 0 processing, 1 failed." in result.output

    def test_inbox_command_empty(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['recon', 'inbox'])
        assert "Webhook inbox is empty." in result.output


_KILLED_WORKER = textwrap.dedent("""
    import os
    import sys
    import time

    from posrecon import create_app
    from posrecon.extensions import webhook_dispatcher

    app = create_app({
        "SQLALCHEMY_DATABASE_URI": sys.argv[1],
        "WEBHOOK_PROCESS_INLINE": False,
        "WEBHOOK_WORKERS": 1,
        "WEBHOOK_RECOVER_ON_STARTUP": False,
    })
    with app.app_context():
        # Occupy the only worker so the deliveries stay queued
        webhook_dispatcher.submit(time.sleep, 2)

    client = app.test_client()
    for _ in range(3):
        response = client.post(
            "/api/webhooks/payment-terminal",
            json={"state": "approved", "invoicenumber": "INV-1001"},
            headers={"X-Tenant-Id": sys.argv[2]},
        )
        assert response.status_code == 200, response.status_code

    os._exit(0)
""")


class RestartRecoveryTests(unittest.TestCase):
    """A process killed with acknowledged deliveries still queued loses none of them."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_uri = f"sqlite:///{os.path.join(self.tmpdir.name, 'restart.db')}"
        self.apps = []

        app = self.make_app()
        with app.app_context():
            db.create_all()
            self.session_id = session_service.open_session(TENANT_A, "INV-1001", make_snapshot()).id
            db.session.remove()
            db.engine.dispose()

    def tearDown(self):
        for app in self.apps:
            with app.app_context():
                db.session.remove()
                db.engine.dispose()
        self.tmpdir.cleanup()

    def make_app(self):
        app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": self.db_uri,
            "WEBHOOK_PROCESS_INLINE": True,
            "DB_RETRY_BACKOFF_SECONDS": 0.01,
        })
        self.apps.append(app)
        return app

    def kill_worker_mid_queue(self):
        env = dict(os.environ)
        backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(posrecon.__file__)))
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [backend_dir, env.get("PYTHONPATH")]))
        completed = subprocess.run(
            [sys.executable, "-c", _KILLED_WORKER, self.db_uri, TENANT_A],
            env=env, capture_output=True, text=True, timeout=60,
        )
        self.assertEqual(completed.returncode, 0, completed.stderr)

    def counts(self, app):
        with app.app_context():
            try:
                return (
                    db.session.query(WebhookLogEntry).count(),
                    db.session.query(Sale).filter_by(payment_session_id=self.session_id).count(),
                    db.session.get(PaymentSession, self.session_id).status,
                    [row.status for row in db.session.query(WebhookInboxEntry).order_by(WebhookInboxEntry.id)],
                )
            finally:
                db.session.remove()

    def test_deliveries_survive_process_death(self):
        self.kill_worker_mid_queue()

        inspector = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": self.db_uri,
            "WEBHOOK_PROCESS_INLINE": True,
            "WEBHOOK_RECOVER_ON_STARTUP": False,
        })
        self.apps.append(inspector)
        self.assertEqual(self.counts(inspector), (0, 0, "pending", ["queued"] * 3))

        restarted = self.make_app()

        self.assertEqual(self.counts(restarted), (3, 1, "approved", ["processed"] * 3))
