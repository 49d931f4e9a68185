"""create expense tables

Revision ID: c7e1a9d2f0b4
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'c7e1a9d2f0b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('notify_budget_alerts', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_approval_requests', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'families',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('admin_user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'family_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('role', sa.String(16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('family_id', 'user_id', name='uq_family_member'),
    )

    op.create_table(
        'recurring_expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('paid_by', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=True, index=True),
        sa.Column('expense_type', sa.String(16), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('category', sa.String(64), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('pattern', sa.String(16), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('next_occurrence', sa.DateTime(), nullable=False),
        sa.Column('last_processed', sa.DateTime(), nullable=True),
        sa.Column('split_type', sa.String(16), nullable=False),
        sa.Column('shared_with', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('auto_approve', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('occurrence_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_occurrences', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_recurring_due', 'recurring_expenses', ['is_active', 'next_occurrence'])

    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('paid_by', sa.Integer(), nullable=False, index=True),
        sa.Column('family_id', sa.Integer(), nullable=True, index=True),
        sa.Column('expense_type', sa.String(16), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('category', sa.String(64), nullable=False, index=True),
        sa.Column('expense_date', sa.DateTime(), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('split_type', sa.String(16), nullable=False),
        sa.Column('shared_with', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('recurring_expense_id', sa.Integer(), nullable=True, index=True),
        sa.Column('approval_status', sa.String(16), nullable=False),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.String(512), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_expenses_family_category_date', 'expenses', ['family_id', 'category', 'expense_date'])
    op.create_index('ix_expenses_user_date', 'expenses', ['user_id', 'expense_date'])

    op.create_table(
        'budgets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True, index=True),
        sa.Column('family_id', sa.Integer(), nullable=True, index=True),
        sa.Column('category', sa.String(64), nullable=False, index=True),
        sa.Column('limit_amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('spent', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('period', sa.String(16), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_end', sa.DateTime(), nullable=False, index=True),
        sa.Column('last_reset', sa.DateTime(), nullable=True),
        sa.Column('alert_threshold', sa.Integer(), nullable=False, server_default='80'),
        sa.Column('alert_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rollover', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_budgets_family_category_period', 'budgets', ['family_id', 'category', 'period'])
    op.create_index('ix_budgets_user_category_period', 'budgets', ['user_id', 'category', 'period'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(32), nullable=False, index=True),
        sa.Column('entity_id', sa.Integer(), nullable=False, index=True),
        sa.Column('action', sa.String(32), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), nullable=True, index=True),
        sa.Column('family_id', sa.Integer(), nullable=True, index=True),
        sa.Column('changes', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('occurred_at', sa.DateTime(), nullable=False, index=True),
    )
    op.create_index('ix_audit_entity', 'audit_log', ['entity_type', 'entity_id', 'occurred_at'])


def downgrade() -> None:
    op.drop_index('ix_audit_entity', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('ix_budgets_user_category_period', table_name='budgets')
    op.drop_index('ix_budgets_family_category_period', table_name='budgets')
    op.drop_table('budgets')
    op.drop_index('ix_expenses_user_date', table_name='expenses')
    op.drop_index('ix_expenses_family_category_date', table_name='expenses')
    op.drop_table('expenses')
    op.drop_index('ix_recurring_due', table_name='recurring_expenses')
    op.drop_table('recurring_expenses')
    op.drop_table('family_members')
    op.drop_table('families')
    op.drop_table('users')
