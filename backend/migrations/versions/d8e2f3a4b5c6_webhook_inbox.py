"""Durable webhook inbox; link log entries to their spooled delivery

Revision ID: d8e2f3a4b5c6
Revises: c7d1e2f3a4b5
Create Date: 2026-10-17 15:40:07.502916

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd8e2f3a4b5c6'
down_revision = 'c7d1e2f3a4b5'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('terminal_webhook_inbox',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('raw_body', sa.LargeBinary(), nullable=False),
    sa.Column('header_tenant', sa.String(length=64), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('attempt_count', sa.Integer(), nullable=False),
    sa.Column('claimed_at', sa.DateTime(), nullable=True),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('terminal_webhook_inbox', schema=None) as batch_op:
        batch_op.create_index('ix_terminal_webhook_inbox_status_received', ['status', 'received_at'], unique=False)

    with op.batch_alter_table('terminal_webhook_log', schema=None) as batch_op:
        batch_op.add_column(sa.Column('inbox_id', sa.Integer(), nullable=True))
        batch_op.create_unique_constraint('uq_terminal_webhook_log_inbox_id', ['inbox_id'])


def downgrade():
    with op.batch_alter_table('terminal_webhook_log', schema=None) as batch_op:
        batch_op.drop_constraint('uq_terminal_webhook_log_inbox_id', type_='unique')
        batch_op.drop_column('inbox_id')

    with op.batch_alter_table('terminal_webhook_inbox', schema=None) as batch_op:
        batch_op.drop_index('ix_terminal_webhook_inbox_status_received')

    op.drop_table('terminal_webhook_inbox')
