"""Card checkout reconciliation: payment sessions, sales, webhook log, session ledger

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-17 09:12:44.118203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c7d1e2f3a4b5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('payment_sessions',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('tenant_id', sa.String(length=64), nullable=False),
    sa.Column('invoice_number', sa.String(length=64), nullable=False),
    sa.Column('req_txn_id', sa.String(length=64), nullable=False),
    sa.Column('attempt', sa.Integer(), nullable=False),
    sa.Column('amount_cents', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('sale_id', sa.Integer(), nullable=True),
    sa.Column('pos_snapshot', sa.JSON(), nullable=True),
    sa.Column('webhook_payload', sa.JSON(), nullable=True),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('last_seen_at', sa.DateTime(), nullable=True),
    sa.Column('version_id', sa.Integer(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_sessions_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_sessions_req_txn_id'), ['req_txn_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_sessions_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_sessions_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_sessions_started_at'), ['started_at'], unique=False)
        batch_op.create_index('ix_payment_sessions_tenant_invoice_started', ['tenant_id', 'invoice_number', 'started_at'], unique=False)
        batch_op.create_index('ix_payment_sessions_tenant_status', ['tenant_id', 'status'], unique=False)

    op.create_table('sales',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('tenant_id', sa.String(length=64), nullable=False),
    sa.Column('payment_session_id', sa.Integer(), nullable=False),
    sa.Column('invoice_number', sa.String(length=64), nullable=False),
    sa.Column('sale_ts', sa.DateTime(), nullable=False),
    sa.Column('subtotal_cents', sa.Integer(), nullable=False),
    sa.Column('discount_cents', sa.Integer(), nullable=False),
    sa.Column('tax_cents', sa.Integer(), nullable=False),
    sa.Column('total_cents', sa.Integer(), nullable=False),
    sa.Column('payment_method', sa.String(length=32), nullable=False),
    sa.Column('payment_detail', sa.JSON(), nullable=True),
    sa.Column('items', sa.JSON(), nullable=False),
    sa.ForeignKeyConstraint(['payment_session_id'], ['payment_sessions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('payment_session_id', name='uq_sales_payment_session'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_invoice_number'), ['invoice_number'], unique=False)
        batch_op.create_index('ix_sales_tenant_sale_ts', ['tenant_id', 'sale_ts'], unique=False)

    op.create_table('terminal_webhook_log',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('tenant_id', sa.String(length=64), nullable=True),
    sa.Column('tenant_source', sa.String(length=16), nullable=False),
    sa.Column('req_txn_id', sa.String(length=64), nullable=True),
    sa.Column('invoice_number', sa.String(length=64), nullable=True),
    sa.Column('state', sa.String(length=128), nullable=True),
    sa.Column('normalized_status', sa.String(length=16), nullable=False),
    sa.Column('amount', sa.String(length=32), nullable=True),
    sa.Column('total_with_fees', sa.String(length=32), nullable=True),
    sa.Column('payload', sa.JSON(), nullable=False),
    sa.Column('raw_body', sa.Text(), nullable=True),
    sa.Column('parse_error', sa.Boolean(), nullable=False),
    sa.Column('matched_session_id', sa.Integer(), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('terminal_webhook_log', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_terminal_webhook_log_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_terminal_webhook_log_req_txn_id'), ['req_txn_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_terminal_webhook_log_matched_session_id'), ['matched_session_id'], unique=False)
        batch_op.create_index('ix_terminal_webhook_log_invoice', ['invoice_number'], unique=False)
        batch_op.create_index('ix_terminal_webhook_log_received', ['received_at'], unique=False)

    op.create_table('payment_session_events',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('session_id', sa.Integer(), nullable=False),
    sa.Column('tenant_id', sa.String(length=64), nullable=False),
    sa.Column('invoice_number', sa.String(length=64), nullable=False),
    sa.Column('event_type', sa.String(length=64), nullable=False),
    sa.Column('sale_id', sa.Integer(), nullable=True),
    sa.Column('detail', sa.Text(), nullable=True),
    sa.Column('occurred_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['session_id'], ['payment_sessions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_session_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_session_events_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_session_events_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index('ix_payment_session_events_type_occurred', ['event_type', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('payment_session_events')
    op.drop_table('terminal_webhook_log')
    op.drop_table('sales')
    op.drop_table('payment_sessions')
