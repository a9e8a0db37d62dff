"""ledger schema

Revision ID: 0001
Revises:
Create Date: 2025-01-06 09:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "resource_policy",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _created_at(),
        sa.Column("policy_key", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("config_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_resource_policy_resource_type", "resource_policy", ["resource_type"])

    op.create_table(
        "policy_assignment",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _created_at(),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column(
            "policy_key",
            sa.String(length=255),
            sa.ForeignKey("resource_policy.policy_key", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("consumption_priority", sa.Integer(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("auto_approve_up_to", sa.String(length=64), nullable=True),
        sa.Column("hire_date", sa.Date(), nullable=True),
        sa.UniqueConstraint("entity_id", "policy_key", "effective_from", name="uq_assignment_entity_policy_from"),
    )
    op.create_index("ix_policy_assignment_entity_id", "policy_assignment", ["entity_id"])
    op.create_index("ix_policy_assignment_policy_key", "policy_assignment", ["policy_key"])
    op.create_index("ix_policy_assignment_resource_type", "policy_assignment", ["resource_type"])

    op.create_table(
        "ledger_transaction",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tx_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("policy_id", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("tx_type", sa.String(length=50), nullable=False),
        sa.Column("amount", sa.String(length=64), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_day", sa.Date(), nullable=False),
        sa.Column("granularity", sa.String(length=20), nullable=False),
        sa.Column("reference_id", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True, unique=True),
        sa.Column("reversed_transaction_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_ledger_transaction_entity_id", "ledger_transaction", ["entity_id"])
    op.create_index("ix_ledger_transaction_policy_id", "ledger_transaction", ["policy_id"])
    op.create_index("ix_ledger_transaction_reference_id", "ledger_transaction", ["reference_id"])
    op.create_index("ix_ledger_entity_policy_day", "ledger_transaction", ["entity_id", "policy_id", "effective_day"])
    op.create_index("ix_ledger_entity_day", "ledger_transaction", ["entity_id", "effective_day"])

    op.create_table(
        "consumption_day_claim",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("transaction_id", sa.String(length=255), nullable=False, unique=True),
        sa.UniqueConstraint("entity_id", "resource_type", "day", name="uq_consumption_day_claim"),
    )

    op.create_table(
        "resource_request",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _created_at(),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=100), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("amount_per_day", sa.String(length=64), nullable=False),
        sa.Column("total_amount", sa.String(length=64), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("allocations_json", sa.JSON(), nullable=True),
        sa.Column("transaction_ids", sa.JSON(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.String(length=255), nullable=True),
        sa.Column("decision_note", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("entity_id", "idempotency_key", name="uq_request_idempotency"),
    )
    op.create_index("ix_resource_request_entity_id", "resource_request", ["entity_id"])
    op.create_index("ix_resource_request_status", "resource_request", ["status"])
    op.create_index("ix_request_entity_status", "resource_request", ["entity_id", "status"])

    op.create_table(
        "reconciliation_run",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _created_at(),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("policy_key", sa.String(length=255), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("trigger", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("carried_over", sa.String(length=64), nullable=False),
        sa.Column("expired", sa.String(length=64), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("next_policy_key", sa.String(length=255), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("entity_id", "policy_key", "period_start", "period_end", name="uq_reconciliation_run"),
    )
    op.create_index("ix_reconciliation_run_entity_id", "reconciliation_run", ["entity_id"])
    op.create_index("ix_reconciliation_run_policy_key", "reconciliation_run", ["policy_key"])
    op.create_index("ix_reconciliation_run_status", "reconciliation_run", ["status"])

    op.create_table(
        "balance_snapshot",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("policy_key", sa.String(length=255), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("unit", sa.String(length=20), nullable=False),
        sa.Column("accrued_to_date", sa.String(length=64), nullable=False),
        sa.Column("total_entitlement", sa.String(length=64), nullable=False),
        sa.Column("total_consumed", sa.String(length=64), nullable=False),
        sa.Column("pending", sa.String(length=64), nullable=False),
        sa.Column("adjustments", sa.String(length=64), nullable=False),
        sa.Column("current_accrued", sa.String(length=64), nullable=False),
        sa.Column("taken_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("entity_id", "policy_key", "period_start", "period_end", name="uq_balance_snapshot_period"),
    )
    op.create_index("ix_balance_snapshot_entity_id", "balance_snapshot", ["entity_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "balance_snapshot",
        "reconciliation_run",
        "resource_request",
        "consumption_day_claim",
        "ledger_transaction",
        "policy_assignment",
        "resource_policy",
    ):
        op.drop_table(table)
