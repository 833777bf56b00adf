# Overview: Flask CLI command groups for bootstrap and reconciliation inspection.

# backend/posrecon/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; use migrations in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reconciliation inspection:
# - python -m flask recon unreconciled --older-than-minutes 30 [--tenant T]
#   Finalized sales whose session the terminal never confirmed, or declined.
# - python -m flask recon orphans --limit 50
#   Webhook deliveries that matched no session.
# - python -m flask recon replay-orphans --limit 50
#   Re-run session matching for orphans (read-only; the log is not rewritten).
# - python -m flask recon conflicts --limit 50
#   Status and sale-stamp conflicts recorded in the session ledger.
# - python -m flask recon inbox --limit 50
#   Acknowledged deliveries still queued, failed or mid-processing.
# - python -m flask recon drain-inbox --limit 500
#   Process the inbox backlog in this process (startup does the same in the background).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models.checkout import SESSION_STATUS_DECLINED
from .services import maintenance_service, session_events, webhook_inbox
from .services.webhook_log_service import list_orphans
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the webhook audit log!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('recon')
def recon_group():
    """Checkout reconciliation inspection commands."""


@recon_group.command('unreconciled')
@click.option('--older-than-minutes', type=int, default=30, show_default=True, help='Only sessions started before this window')
@click.option('--tenant', 'tenant_id', help='Filter by tenant id')
@with_appcontext
def unreconciled(older_than_minutes, tenant_id):
    """List finalized sales the terminal never confirmed, or later declined."""
    sessions = maintenance_service.find_unreconciled_sessions(
        older_than_minutes=older_than_minutes, tenant_id=tenant_id,
    )
    if not sessions:
        click.echo("No unreconciled sessions.")
        return

    click.echo(f"\n{'ID':<6} {'Tenant':<38} {'Invoice':<26} {'Sale':<8} {'Status':<10} Started")
    click.echo("=" * 110)
    for s in sessions:
        click.echo(
            f"{s.id:<6} {s.tenant_id:<38} {s.invoice_number:<26} {s.sale_id:<8} {s.status:<10} {to_utc_z(s.started_at)}"
        )
    declined = sum(1 for s in sessions if s.status == SESSION_STATUS_DECLINED)
    click.echo(f"\n{len(sessions)} unreconciled session(s), {declined} declined after finalize.")


@recon_group.command('orphans')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def orphans(limit):
    """List webhook deliveries that matched no session."""
    entries = list_orphans(limit=limit)
    if not entries:
        click.echo("No orphan deliveries.")
        return

    click.echo(f"\n{'ID':<6} {'Received':<22} {'Invoice':<26} {'Req Txn':<40} {'Status':<10} Tenant")
    click.echo("=" * 120)
    for e in entries:
        tenant = f"{e.tenant_id} ({e.tenant_source})" if e.tenant_id else "-"
        click.echo(
            f"{e.id:<6} {to_utc_z(e.received_at):<22} {(e.invoice_number or '-'):<26} "
            f"{(e.req_txn_id or '-'):<40} {e.normalized_status:<10} {tenant}"
        )


@recon_group.command('replay-orphans')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def replay_orphans(limit):
    """Show orphan deliveries that now match a session."""
    matches = maintenance_service.match_orphans(limit=limit)
    if not matches:
        click.echo("No orphan deliveries match a session.")
        return

    for entry, session in matches:
        click.echo(
            f"log {entry.id} -> session {session.id} "
            f"(tenant {session.tenant_id}, invoice {session.invoice_number}, status {session.status})"
        )
    click.echo(f"\n{len(matches)} match(es). Ask the terminal to redeliver to apply them.")


@recon_group.command('conflicts')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def conflicts(limit):
    """List recorded status and sale-stamp conflicts."""
    events = session_events.list_conflicts(limit=limit)
    if not events:
        click.echo("No conflicts recorded.")
        return

    for ev in events:
        click.echo(
            f"{to_utc_z(ev.occurred_at)} {ev.event_type:<24} session {ev.session_id} "
            f"invoice {ev.invoice_number}: {ev.detail or ''}"
        )
    click.echo(f"\n{session_events.count_conflicts()} conflict(s) total.")


@recon_group.command('inbox')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def inbox(limit):
    """List acknowledged webhook deliveries not yet processed."""
    backlog = webhook_inbox.inbox_backlog()
    entries = webhook_inbox.list_backlog(limit=limit)
    if not entries:
        click.echo("Webhook inbox is empty.")
        return

    click.echo(f"\n{'ID':<6} {'Received':<22} {'Status':<11} {'Attempts':<9} Error")
    click.echo("=" * 100)
    for e in entries:
        click.echo(
            f"{e.id:<6} {to_utc_z(e.received_at):<22} {e.status:<11} {e.attempt_count:<9} {e.error_message or ''}"
        )
    summary = ", ".join(f"{count} {status}" for status, count in backlog.items())
    click.echo(f"\nBacklog: {summary}.")


@recon_group.command('drain-inbox')
@click.option('--limit', type=int, default=500, show_default=True)
@with_appcontext
def drain_inbox(limit):
    """Process queued, failed and abandoned inbox deliveries now."""
    count = webhook_inbox.drain_inbox(limit=limit, background=False)
    click.echo(f"PASS Drained {count} inbox delivery(ies).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(recon_group)
