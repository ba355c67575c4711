"""create_reimbursement_engine_tables

Revision ID: 4d7e1a9c2b30
Revises:
Create Date: 2026-03-02 09:12:41.218334

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4d7e1a9c2b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        _id(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('department_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_department_id', 'users', ['department_id'])

    op.create_table(
        'approval_tiers',
        _id(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('tier_order', sa.Integer(), nullable=False),
        sa.Column('min_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('max_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('approver_role', sa.String(50), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_tiers_tier_order', 'approval_tiers', ['tier_order'])

    op.create_table(
        'approval_delegations',
        _id(),
        sa.Column('from_user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('to_user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_delegations_from_user_id', 'approval_delegations', ['from_user_id'])
    op.create_index('ix_approval_delegations_to_user_id', 'approval_delegations', ['to_user_id'])

    op.create_table(
        'vouchers',
        _id(),
        sa.Column('voucher_number', sa.String(30), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('requester_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=False),
        sa.Column('requested_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('approved_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('disbursed_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('spent_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('settled_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('under_spend_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('over_spend_amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('cash_returned', sa.Numeric(15, 2), nullable=True),
        sa.Column('approved_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('disbursed_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('payment_reference', sa.String(100), nullable=True),
        sa.Column('settlement_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('overspend_justification', sa.Text(), nullable=True),
        sa.Column('settlement_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['requester_id'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['disbursed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vouchers_voucher_number', 'vouchers', ['voucher_number'], unique=True)
    op.create_index('ix_vouchers_status', 'vouchers', ['status'])
    op.create_index('ix_vouchers_requester_id', 'vouchers', ['requester_id'])

    op.create_table(
        'expenses',
        _id(),
        sa.Column('expense_number', sa.String(50), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('submitter_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('department_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cost_center_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('voucher_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('approval_chain', sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column('requires_escalation', sa.Boolean(), nullable=False),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('clarification_note', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['submitter_id'], ['users.id']),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('expense_number'),
    )
    op.create_index('ix_expenses_status', 'expenses', ['status'])
    op.create_index('ix_expenses_submitter_id', 'expenses', ['submitter_id'])
    op.create_index('ix_expenses_voucher_id', 'expenses', ['voucher_id'])
    op.create_index('ix_expenses_department_id', 'expenses', ['department_id'])
    op.create_index('ix_expenses_project_id', 'expenses', ['project_id'])
    op.create_index('ix_expenses_cost_center_id', 'expenses', ['cost_center_id'])
    op.create_index('ix_expenses_category_id', 'expenses', ['category_id'])

    op.create_table(
        'approval_records',
        _id(),
        sa.Column('expense_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tier_order', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('approver_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('delegated_from_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_emergency', sa.Boolean(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id']),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id']),
        sa.ForeignKeyConstraint(['delegated_from_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_approval_records_expense_id', 'approval_records', ['expense_id'])
    op.create_index('ix_approval_records_approver_id', 'approval_records', ['approver_id'])

    op.create_table(
        'budgets',
        _id(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('warning_threshold', sa.Numeric(5, 2), nullable=False),
        sa.Column('enforcement', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('department_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cost_center_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('employee_id', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['employee_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    for column in ('department_id', 'project_id', 'cost_center_id', 'category_id', 'employee_id'):
        op.create_index(f'ix_budgets_{column}', 'budgets', [column])

    op.create_table(
        'budget_transfers',
        _id(),
        sa.Column('from_budget_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('to_budget_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('transferred_by', postgresql.UUID(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['from_budget_id'], ['budgets.id']),
        sa.ForeignKeyConstraint(['to_budget_id'], ['budgets.id']),
        sa.ForeignKeyConstraint(['transferred_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_budget_transfers_from_budget_id', 'budget_transfers', ['from_budget_id'])
    op.create_index('ix_budget_transfers_to_budget_id', 'budget_transfers', ['to_budget_id'])

    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_role', sa.String(50), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])

    # Append-only audit trail.
    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('budget_transfers')
    op.drop_table('budgets')
    op.drop_table('approval_records')
    op.drop_table('expenses')
    op.drop_table('vouchers')
    op.drop_table('approval_delegations')
    op.drop_table('approval_tiers')
    op.drop_table('users')
