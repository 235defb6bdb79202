"""Create audit_log table

Revision ID: 002_audit_log
Revises: 001_ledger
Create Date: 2026-10-19

Every settlement, reconciliation and withdrawal is recorded with before/after
snapshots.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "002_audit_log"
down_revision = "001_ledger"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "sale_settled",
                "sale_reconciled",
                "royalties_withdrawn",
                name="audit_action",
            ),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=200), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
    )

    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_index("ix_audit_log_entity_ts", table_name="audit_log")
    op.drop_index("ix_audit_log_entity", table_name="audit_log")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_id", table_name="audit_log")
    op.drop_index("ix_audit_log_ts", table_name="audit_log")
    op.drop_table("audit_log")
    sa.Enum(name="audit_action").drop(op.get_bind(), checkfirst=True)
