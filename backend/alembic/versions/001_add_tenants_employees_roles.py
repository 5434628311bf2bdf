"""add tenants, employees and roles

Revision ID: 001
Revises:
Create Date: 2026-09-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create companies, roles and employees tables"""
    op.create_table(
        'companies',
        sa.Column('company_id', sa.String(), nullable=False),
        sa.Column('company_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('subscription_status', sa.String(length=20), nullable=False, server_default='Active'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('company_id')
    )
    op.create_index(op.f('ix_companies_email'), 'companies', ['email'])

    op.create_table(
        'roles',
        sa.Column('role_id', sa.String(), nullable=False),
        sa.Column('company_id', sa.String(), nullable=False),
        sa.Column('role_name', sa.String(), nullable=False),
        sa.Column('role_description', sa.Text(), nullable=True),
        sa.Column('role_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('capabilities', sa.JSON(), nullable=False),
        sa.Column('max_claims_per_day', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_system_default', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('last_modified_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.company_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('role_id'),
        # Role names are unique per company, not across companies
        sa.UniqueConstraint('company_id', 'role_name', name='uq_roles_company_role_name')
    )
    op.create_index('idx_roles_company_level', 'roles', ['company_id', 'role_level'])

    op.create_table(
        'employees',
        sa.Column('employee_id', sa.String(), nullable=False),
        sa.Column('company_id', sa.String(), nullable=False),
        sa.Column('role_id', sa.String(), nullable=True),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('employee_status', sa.String(length=20), nullable=False, server_default='Active'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.company_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['roles.role_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('employee_id')
    )
    op.create_index('idx_employees_company_id', 'employees', ['company_id'])
    op.create_index('idx_employees_role_id', 'employees', ['role_id'])


def downgrade() -> None:
    """Drop employees, roles and companies tables"""
    op.drop_index('idx_employees_role_id', table_name='employees')
    op.drop_index('idx_employees_company_id', table_name='employees')
    op.drop_table('employees')
    op.drop_index('idx_roles_company_level', table_name='roles')
    op.drop_table('roles')
    op.drop_index(op.f('ix_companies_email'), table_name='companies')
    op.drop_table('companies')
