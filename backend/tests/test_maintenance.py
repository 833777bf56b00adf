# Overview: Pytest coverage for operator inspection queries and CLI commands.

from datetime import timedelta

from posrecon.services import maintenance_service, session_service
from posrecon.services.sale_materializer import materialize
from posrecon.services.webhook_service import process_delivery
from posrecon.time_utils import utcnow

from conftest import TENANT_A, TENANT_B, make_snapshot


def open_old_session(invoice, tenant_id=TENANT_A, minutes_ago=60):
    return session_service.open_session(
        tenant_id, invoice, make_snapshot(),
        started_at=utcnow() - timedelta(minutes=minutes_ago),
    )


class TestUnreconciledSessions:

    def test_finalized_but_unconfirmed_is_listed(self, db_session):
        stale = open_old_session("INV-1")
        materialize(TENANT_A, stale)

        found = maintenance_service.find_unreconciled_sessions(older_than_minutes=30)

        assert [s.id for s in found] == [stale.id]

    def test_recent_and_unfinalized_are_skipped(self, db_session):
        recent = open_old_session("INV-1", minutes_ago=5)
        materialize(TENANT_A, recent)
        open_old_session("INV-2")

        assert maintenance_service.find_unreconciled_sessions(older_than_minutes=30) == []

    def test_confirmed_is_skipped(self, db_session):
        session = open_old_session("INV-1")
        materialize(TENANT_A, session)
        session_service.transition_status(TENANT_A, "INV-1", "approved", {"state": "approved"})

        assert maintenance_service.find_unreconciled_sessions() == []

    def test_tenant_filter(self, db_session):
        materialize(TENANT_A, open_old_session("INV-1", tenant_id=TENANT_A))
        other = open_old_session("INV-1", tenant_id=TENANT_B)
        materialize(TENANT_B, other)

        found = maintenance_service.find_unreconciled_sessions(tenant_id=TENANT_B)

        assert [s.id for s in found] == [other.id]

    def test_declined_after_finalize_is_listed_at_any_age(self, db_session):
        session = session_service.open_session(TENANT_A, "INV-1", make_snapshot())
        materialize(TENANT_A, session)
        session_service.transition_status(TENANT_A, "INV-1", "declined", {"state": "declined"})

        found = maintenance_service.find_unreconciled_sessions(older_than_minutes=30)

        assert [s.id for s in found] == [session.id]
        assert found[0].status == "declined"

    def test_declined_without_sale_is_skipped(self, db_session):
        open_old_session("INV-1")
        session_service.transition_status(TENANT_A, "INV-1", "declined", {"state": "declined"})

        assert maintenance_service.find_unreconciled_sessions() == []


class TestOrphanMatching:

    def test_orphan_matches_session_opened_later(self, db_session):
        process_delivery(b'{"state": "approved", "invoicenumber": "INV-9"}')
        session = session_service.open_session(TENANT_A, "INV-9", make_snapshot())

        matches = maintenance_service.match_orphans()

        assert len(matches) == 1
        entry, matched = matches[0]
        assert entry.invoice_number == "INV-9"
        assert matched.id == session.id
        assert entry.matched_session_id is None

    def test_header_tenant_scopes_replay(self, db_session):
        process_delivery(b'{"state": "approved", "invoicenumber": "INV-9"}', TENANT_B)
        session_service.open_session(TENANT_A, "INV-9", make_snapshot())

        assert maintenance_service.match_orphans() == []

    def test_unparsable_orphan_never_matches(self, db_session):
        process_delivery(b'not json')
        session_service.open_session(TENANT_A, "INV-9", make_snapshot())

        assert maintenance_service.match_orphans() == []


class TestReconCommands:

    def test_unreconciled_lists_session(self, app, db_session):
        session = open_old_session("INV-1")
        materialize(TENANT_A, session)

        result = app.test_cli_runner().invoke(args=['recon', 'unreconciled'])

        assert result.exit_code == 0
        assert "INV-1" in result.output
        assert "pending" in result.output
        assert "1 unreconciled session(s), 0 declined after finalize." in result.output

    def test_unreconciled_shows_declined_after_finalize(self, app, db_session):
        session = session_service.open_session(TENANT_A, "INV-7", make_snapshot())
        materialize(TENANT_A, session)
        process_delivery(b'{"state": "declined", "invoicenumber": "INV-7"}', TENANT_A)

        result = app.test_cli_runner().invoke(args=['recon', 'unreconciled'])

        assert result.exit_code == 0
        assert "INV-7" in result.output
        assert "declined" in result.output
        assert "1 unreconciled session(s), 1 declined after finalize." in result.output

    def test_unreconciled_empty(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['recon', 'unreconciled'])
        assert "No unreconciled sessions." in result.output

    def test_orphans(self, app, db_session):
        process_delivery(b'{"state": "declined", "invoicenumber": "INV-404"}', TENANT_B)

        result = app.test_cli_runner().invoke(args=['recon', 'orphans'])

        assert result.exit_code == 0
        assert "INV-404" in result.output
        assert f"{TENANT_B} (header)" in result.output

    def test_replay_orphans(self, app, db_session):
        process_delivery(b'{"state": "approved", "invoicenumber": "INV-9"}')
        session = session_service.open_session(TENANT_A, "INV-9", make_snapshot())

        result = app.test_cli_runner().invoke(args=['recon', 'replay-orphans'])

        assert result.exit_code == 0
        assert f"-> session {session.id}" in result.output

    def test_conflicts(self, app, db_session):
        session_service.open_session(TENANT_A, "INV-1", make_snapshot())
        process_delivery(b'{"state": "approved", "invoicenumber": "INV-1"}')
        process_delivery(b'{"state": "declined", "invoicenumber": "INV-1"}')

        result = app.test_cli_runner().invoke(args=['recon', 'conflicts'])

        assert result.exit_code == 0
        assert "session.status_conflict" in result.output
        assert "recorded=approved, received=declined" in result.output
        assert "1 conflict(s) total." in result.output


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['system', 'init-db'])

        assert result.exit_code == 0
        assert "PASS Schema ready." in result.output

    def test_reset_db_requires_confirmation(self, app, db_session):
        session_service.open_session(TENANT_A, "INV-1", make_snapshot())

        result = app.test_cli_runner().invoke(args=['system', 'reset-db'], input="n\n")

        assert result.exit_code != 0
        assert session_service.find_pending(TENANT_A, "INV-1") is not None


class TestHealth:

    def test_health_reports_dispatcher(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['database']['status'] == 'healthy'
        assert response.json['webhook_dispatcher'] == {'inline': True, 'pending_jobs': 0}
        assert response.json['webhook_inbox'] == {'queued': 0, 'processing': 0, 'failed': 0}
