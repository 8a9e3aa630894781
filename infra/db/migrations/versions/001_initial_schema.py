"""Initial schema for Covrily

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-09-20 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Profiles (notification address per user)
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(320)),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    # Receipts
    op.create_table(
        'receipts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('merchant', sa.String(255)),
        sa.Column('order_id', sa.String(255)),
        sa.Column('purchase_date', sa.TIMESTAMP(timezone=True)),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('total_cents', sa.BigInteger),
        sa.Column('dedupe_key', sa.String(64)),  # sha256 hex of the canonical identity
        sa.Column('source', sa.String(32), nullable=False, server_default='manual'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_unique_constraint('uq_receipts_dedupe_key', 'receipts', ['dedupe_key'])
    op.create_index('ix_receipts_user_id', 'receipts', ['user_id'])

    # Deadlines (one per receipt per window type)
    op.create_table(
        'deadlines',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('receipt_id', sa.String(36), sa.ForeignKey('receipts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),  # return, price_adjust
        sa.Column('due_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='open'),  # open, closed
        sa.Column('decision', sa.String(16)),  # keep, return
        sa.Column('decision_note', sa.Text),
        sa.Column('closed_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('due_today_notified_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('due_today_claimed_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('heads_up_notified_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('heads_up_claimed_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("type IN ('return', 'price_adjust')", name='ck_deadlines_type'),
        sa.CheckConstraint("status IN ('open', 'closed')", name='ck_deadlines_status'),
        sa.CheckConstraint("decision IS NULL OR decision IN ('keep', 'return')", name='ck_deadlines_decision'),
    )
    op.create_index('ix_deadlines_user_id', 'deadlines', ['user_id'])
    op.create_index('idx_deadlines_status_due', 'deadlines', ['status', 'due_at'])

    # Scheduler scans: open deadlines with an unset gate, per milestone
    op.create_index(
        'idx_deadlines_due_today_pending', 'deadlines', ['due_at'],
        postgresql_where=sa.text("status = 'open' AND due_today_notified_at IS NULL"),
    )
    op.create_index(
        'idx_deadlines_heads_up_pending', 'deadlines', ['due_at'],
        postgresql_where=sa.text("status = 'open' AND heads_up_notified_at IS NULL"),
    )

    # Connector credentials (one per user per provider)
    op.create_table(
        'connector_credentials',
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('refresh_token', sa.Text),
        sa.Column('access_token', sa.Text),
        sa.Column('access_token_expires_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('granted_scopes', postgresql.JSON, nullable=False, server_default='[]'),
        sa.Column('status', sa.String(32), nullable=False, server_default='active'),  # active, reauth_required
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),  # bumped on every write
        sa.PrimaryKeyConstraint('user_id', 'provider'),
        sa.CheckConstraint(
            "access_token IS NULL OR access_token_expires_at IS NOT NULL",
            name='ck_credentials_token_expiry',
        ),
        sa.CheckConstraint(
            "status <> 'reauth_required' OR access_token IS NULL",
            name='ck_credentials_reauth_no_token',
        ),
    )


def downgrade() -> None:
    op.drop_table('connector_credentials')
    op.drop_index('idx_deadlines_heads_up_pending', table_name='deadlines')
    op.drop_index('idx_deadlines_due_today_pending', table_name='deadlines')
    op.drop_index('idx_deadlines_status_due', table_name='deadlines')
    op.drop_index('ix_deadlines_user_id', table_name='deadlines')
    op.drop_table('deadlines')
    op.drop_index('ix_receipts_user_id', table_name='receipts')
    op.drop_constraint('uq_receipts_dedupe_key', 'receipts', type_='unique')
    op.drop_table('receipts')
    op.drop_table('profiles')
