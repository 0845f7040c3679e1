"""initial_schema

Revision ID: 3f9a1c7e2b40
Revises:
Create Date: 2026-10-19 09:12:44.518201+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f9a1c7e2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. customers (no FKs)
    op.create_table('customers',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('domain', sa.String(length=200), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('domain')
    )
    op.create_index('idx_customers_domain', 'customers', ['domain'], unique=False)

    # 2. users
    op.create_table('users',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=True),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_customer', 'users', ['customer_id'], unique=False)
    op.create_index('idx_users_email', 'users', ['email'], unique=False)
    op.create_index('idx_users_role', 'users', ['role'], unique=False)

    # 3. budgets
    op.create_table('budgets',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('department', sa.String(length=100), nullable=False),
    sa.Column('sub_category', sa.String(length=100), nullable=True),
    sa.Column('fiscal_period', sa.String(length=20), nullable=False),
    sa.Column('budgeted_amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('source', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('budgeted_amount >= 0', name='chk_budget_non_negative'),
    sa.CheckConstraint("source IN ('manual', 'excel', 'csv', 'google_sheets', 'sync', 'api')", name='chk_budget_source'),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    # NULL sub_category must collide with NULL, so the key is an expression index
    op.execute(
        "CREATE UNIQUE INDEX uq_budget_customer_dept_sub_period "
        "ON budgets(customer_id, department, coalesce(sub_category, ''), fiscal_period)"
    )
    op.create_index('idx_budgets_lookup', 'budgets', ['customer_id', 'department', 'fiscal_period'], unique=False)
    op.create_index('idx_budgets_deleted', 'budgets', ['deleted_at'], unique=False)

    # 4. budget_utilizations (1:1 with budgets)
    op.create_table('budget_utilizations',
    sa.Column('budget_id', sa.UUID(), nullable=False),
    sa.Column('committed_amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('reserved_amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('committed_amount >= 0', name='chk_util_committed'),
    sa.CheckConstraint('reserved_amount >= 0', name='chk_util_reserved'),
    sa.ForeignKeyConstraint(['budget_id'], ['budgets.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('budget_id')
    )

    # 5. spend_requests
    op.create_table('spend_requests',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('supplier', sa.String(length=200), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('requested_amount', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('requested_currency', sa.String(length=3), nullable=True),
    sa.Column('budget_category', sa.String(length=100), nullable=False),
    sa.Column('sub_category', sa.String(length=100), nullable=True),
    sa.Column('fiscal_period', sa.String(length=20), nullable=False),
    sa.Column('budget_id', sa.UUID(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('auto_approved', sa.Boolean(), nullable=True),
    sa.Column('approval_reason', sa.Text(), nullable=True),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('created_by_id', sa.UUID(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('decided_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('amount > 0', name='chk_request_amount_positive'),
    sa.CheckConstraint("status IN ('pending', 'auto_approved', 'approved', 'rejected')", name='chk_request_status'),
    sa.ForeignKeyConstraint(['budget_id'], ['budgets.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_requests_customer', 'spend_requests', ['customer_id'], unique=False)
    op.create_index('idx_requests_budget_status', 'spend_requests', ['budget_id', 'status', 'created_at'], unique=False)
    op.create_index('idx_requests_creator', 'spend_requests', ['created_by_id'], unique=False)

    # 6. audit_logs (append-only)
    op.create_table('audit_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('budget_id', sa.UUID(), nullable=False),
    sa.Column('action', sa.String(length=20), nullable=False),
    sa.Column('old_value', sa.Text(), nullable=True),
    sa.Column('new_value', sa.Text(), nullable=True),
    sa.Column('changed_by', sa.String(length=255), nullable=False),
    sa.Column('reason', sa.Text(), nullable=True),
    sa.Column('request_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("action IN ('CREATE', 'UPDATE', 'RESERVE', 'COMMIT', 'RELEASE')", name='chk_audit_action'),
    sa.ForeignKeyConstraint(['budget_id'], ['budgets.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_budget', 'audit_logs', ['budget_id'], unique=False)
    op.create_index('idx_audit_request', 'audit_logs', ['request_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', [sa.text('created_at DESC')], unique=False)

    # 7. approval_thresholds
    op.create_table('approval_thresholds',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('department', sa.String(length=100), nullable=False),
    sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
    sa.Column('updated_by', sa.String(length=255), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('amount >= 0', name='chk_threshold_non_negative'),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('customer_id', 'department', name='uq_threshold_customer_dept')
    )

    # 8. import_history
    op.create_table('import_history',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('source_type', sa.String(length=20), nullable=False),
    sa.Column('file_name', sa.String(length=255), nullable=True),
    sa.Column('total_rows', sa.Integer(), nullable=True),
    sa.Column('success_count', sa.Integer(), nullable=True),
    sa.Column('failure_count', sa.Integer(), nullable=True),
    sa.Column('errors', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('imported_by_id', sa.UUID(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('processing', 'completed', 'failed')", name='chk_import_status'),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.ForeignKeyConstraint(['imported_by_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_import_customer', 'import_history', ['customer_id'], unique=False)
    op.create_index('idx_import_created', 'import_history', [sa.text('created_at DESC')], unique=False)

    # 9. sync_history
    op.create_table('sync_history',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('sync_id', sa.String(length=100), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('source_type', sa.String(length=20), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('triggered_by', sa.String(length=50), nullable=True),
    sa.Column('started_at', sa.DateTime(), nullable=False),
    sa.Column('ended_at', sa.DateTime(), nullable=True),
    sa.Column('duration_ms', sa.Integer(), nullable=True),
    sa.Column('total_rows', sa.Integer(), nullable=True),
    sa.Column('created_count', sa.Integer(), nullable=True),
    sa.Column('updated_count', sa.Integer(), nullable=True),
    sa.Column('unchanged_count', sa.Integer(), nullable=True),
    sa.Column('soft_deleted_count', sa.Integer(), nullable=True),
    sa.Column('error_count', sa.Integer(), nullable=True),
    sa.Column('errors', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.CheckConstraint("status IN ('success', 'partial', 'failed')", name='chk_sync_status'),
    sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sync_id')
    )
    op.create_index('idx_sync_customer', 'sync_history', ['customer_id'], unique=False)
    op.create_index('idx_sync_started', 'sync_history', [sa.text('started_at DESC')], unique=False)


def downgrade() -> None:
    op.drop_index('idx_sync_started', table_name='sync_history')
    op.drop_index('idx_sync_customer', table_name='sync_history')
    op.drop_table('sync_history')
    op.drop_index('idx_import_created', table_name='import_history')
    op.drop_index('idx_import_customer', table_name='import_history')
    op.drop_table('import_history')
    op.drop_table('approval_thresholds')
    op.drop_index('idx_audit_created', table_name='audit_logs')
    op.drop_index('idx_audit_request', table_name='audit_logs')
    op.drop_index('idx_audit_budget', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_requests_creator', table_name='spend_requests')
    op.drop_index('idx_requests_budget_status', table_name='spend_requests')
    op.drop_index('idx_requests_customer', table_name='spend_requests')
    op.drop_table('spend_requests')
    op.drop_table('budget_utilizations')
    op.execute("DROP INDEX IF EXISTS uq_budget_customer_dept_sub_period")
    op.drop_index('idx_budgets_deleted', table_name='budgets')
    op.drop_index('idx_budgets_lookup', table_name='budgets')
    op.drop_table('budgets')
    op.drop_index('idx_users_role', table_name='users')
    op.drop_index('idx_users_email', table_name='users')
    op.drop_index('idx_users_customer', table_name='users')
    op.drop_table('users')
    op.drop_index('idx_customers_domain', table_name='customers')
    op.drop_table('customers')
