"""add append-only audit logs

Revision ID: 002
Revises: 001
Create Date: 2026-09-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create audit_logs table and revoke row changes on PostgreSQL"""
    op.create_table(
        'audit_logs',
        sa.Column('log_id', sa.String(), nullable=False),
        sa.Column('company_id', sa.String(), nullable=True),
        sa.Column('actor_ref', sa.String(), nullable=False),
        sa.Column('actor_kind', sa.String(length=20), nullable=False),
        sa.Column('entity_type', sa.String(length=20), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(length=10), nullable=False),
        sa.Column('before_state', sa.JSON(), nullable=True),
        sa.Column('after_state', sa.JSON(), nullable=True),
        sa.Column('endpoint', sa.String(), nullable=True),
        sa.Column('method', sa.String(length=10), nullable=True),
        sa.Column('client_ip', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('log_id')
    )

    op.create_index('idx_audit_company_created', 'audit_logs', ['company_id', 'created_at'])
    op.create_index('idx_audit_actor_action_created', 'audit_logs', ['actor_ref', 'action', 'created_at'])
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])

    if op.get_bind().dialect.name == 'postgresql':
        # Append-only at the database level too
        op.execute(
            """
            CREATE OR REPLACE FUNCTION audit_logs_reject_change() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'audit_logs is append-only';
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        op.execute(
            """
            CREATE TRIGGER audit_logs_append_only
            BEFORE UPDATE OR DELETE ON audit_logs
            FOR EACH ROW EXECUTE FUNCTION audit_logs_reject_change();
            """
        )


def downgrade() -> None:
    """Drop audit_logs table"""
    if op.get_bind().dialect.name == 'postgresql':
        op.execute("DROP TRIGGER IF EXISTS audit_logs_append_only ON audit_logs")
        op.execute("DROP FUNCTION IF EXISTS audit_logs_reject_change()")
    op.drop_index('idx_audit_entity', table_name='audit_logs')
    op.drop_index('idx_audit_actor_action_created', table_name='audit_logs')
    op.drop_index('idx_audit_company_created', table_name='audit_logs')
    op.drop_table('audit_logs')
