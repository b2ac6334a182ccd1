"""add api call and error logs

Revision ID: 8f2d41c6e913
Revises: 3c1e9a7d2b40
Create Date: 2026-10-19 14:31:52.102847

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f2d41c6e913'
down_revision: Union[str, Sequence[str], None] = '3c1e9a7d2b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('api_call_logs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('connection_id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('provider_id', sa.String(), nullable=False),
    sa.Column('job_id', sa.String(length=36), nullable=True),
    sa.Column('method', sa.String(length=10), nullable=False),
    sa.Column('endpoint', sa.String(length=500), nullable=False),
    sa.Column('status_code', sa.Integer(), nullable=True),
    sa.Column('duration_ms', sa.Integer(), nullable=False),
    sa.Column('success', sa.Boolean(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('rate_limit_remaining', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['connection_id'], ['connections.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_api_call_logs_connection_id'), 'api_call_logs', ['connection_id'], unique=False)
    op.create_index(op.f('ix_api_call_logs_created_at'), 'api_call_logs', ['created_at'], unique=False)
    op.create_table('provider_error_logs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('connection_id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('provider_id', sa.String(), nullable=False),
    sa.Column('job_id', sa.String(length=36), nullable=True),
    sa.Column('error_type', sa.String(length=30), nullable=False),
    sa.Column('error_code', sa.String(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=False),
    sa.Column('context', sa.JSON(), nullable=True),
    sa.Column('resolved', sa.Boolean(), nullable=False),
    sa.Column('resolved_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['connection_id'], ['connections.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_provider_error_logs_connection_id'), 'provider_error_logs', ['connection_id'], unique=False)
    op.create_index(op.f('ix_provider_error_logs_created_at'), 'provider_error_logs', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_provider_error_logs_created_at'), table_name='provider_error_logs')
    op.drop_index(op.f('ix_provider_error_logs_connection_id'), table_name='provider_error_logs')
    op.drop_table('provider_error_logs')
    op.drop_index(op.f('ix_api_call_logs_created_at'), table_name='api_call_logs')
    op.drop_index(op.f('ix_api_call_logs_connection_id'), table_name='api_call_logs')
    op.drop_table('api_call_logs')
