"""Add payment_requests table

Revision ID: 4c2e9a7d1b35
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2e9a7d1b35'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('payment_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key')
    )
    # Stuck-request report scans STARTED rows by age
    op.create_index('ix_payment_requests_status_created_at', 'payment_requests',
                    ['status', 'created_at'], unique=False)


def downgrade():
    op.drop_index('ix_payment_requests_status_created_at', table_name='payment_requests')
    op.drop_table('payment_requests')
