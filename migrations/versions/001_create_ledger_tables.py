"""Create fact store and ledger tables

Revision ID: 001_ledger
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "artifact_publications",
        sa.Column("id", sa.String(300), primary_key=True),
        sa.Column("origin", sa.String(128), nullable=False),
        sa.Column("local_id", sa.BigInteger, nullable=False),
        sa.Column("author", sa.String(128), nullable=False),
        sa.Column("publish_time", sa.BigInteger, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column("is_placeholder", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("dependencies_indexed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("origin", "local_id", name="uq_publications_artifact"),
    )
    op.create_index("ix_artifact_publications_author", "artifact_publications", ["author"])
    op.create_index("ix_publications_publish_time", "artifact_publications", ["publish_time"])

    op.create_table(
        "sales",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("origin", sa.String(128), nullable=False),
        sa.Column("local_id", sa.BigInteger, nullable=False),
        sa.Column("price", sa.String(80), nullable=False),
        sa.Column("buyer", sa.String(128), nullable=False),
        sa.Column("seller", sa.String(128), nullable=False),
        sa.Column("timestamp", sa.BigInteger, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column("id_synthesized", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("settled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("royalty_amount", sa.String(80), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "resolution_incomplete", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_sales_settled", "sales", ["settled"])
    op.create_index("ix_sales_resolution_incomplete", "sales", ["resolution_incomplete"])
    op.create_index("ix_sales_artifact", "sales", ["origin", "local_id"])
    op.create_index("ix_sales_timestamp", "sales", ["timestamp"])

    op.create_table(
        "pending_royalties",
        sa.Column("beneficiary", sa.String(128), primary_key=True),
        sa.Column("amount", sa.String(80), nullable=False, server_default="0"),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "processed_events",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "dependency_edges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("origin", sa.String(128), nullable=False),
        sa.Column("local_id", sa.BigInteger, nullable=False),
        sa.Column("dep_origin", sa.String(128), nullable=False),
        sa.Column("dep_local_id", sa.BigInteger, nullable=False),
        sa.Column("depth", sa.Integer, nullable=False),
        sa.UniqueConstraint(
            "origin", "local_id", "dep_origin", "dep_local_id", name="uq_dependency_edge"
        ),
    )
    op.create_index("ix_dependency_edges_source", "dependency_edges", ["origin", "local_id"])
    op.create_index(
        "ix_dependency_edges_target", "dependency_edges", ["dep_origin", "dep_local_id"]
    )

    op.create_table(
        "royalty_allocations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sale_id", sa.String(200), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("beneficiary", sa.String(128), nullable=False),
        sa.Column("origin", sa.String(128), nullable=False),
        sa.Column("local_id", sa.BigInteger, nullable=False),
        sa.Column("depth", sa.Integer, nullable=False),
        sa.Column("amount", sa.String(80), nullable=False),
        sa.Column("rate", sa.String(40), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "sale_id", "origin", "local_id", name="uq_allocation_sale_artifact"
        ),
    )
    op.create_index("ix_royalty_allocations_sale_id", "royalty_allocations", ["sale_id"])
    op.create_index(
        "ix_royalty_allocations_beneficiary", "royalty_allocations", ["beneficiary"]
    )

    op.create_table(
        "royalty_parameters",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("initial_rate", sa.String(40), nullable=False),
        sa.Column("decay_factor", sa.Integer, nullable=False),
        sa.Column("max_depth", sa.BigInteger, nullable=False),
        sa.Column("floor_rate", sa.String(40), nullable=False),
        sa.Column("decay_period", sa.BigInteger, nullable=True),
        sa.Column("timestamp", sa.BigInteger, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_royalty_parameters_timestamp", "royalty_parameters", ["timestamp"])


def downgrade() -> None:
    op.drop_table("royalty_parameters")
    op.drop_table("royalty_allocations")
    op.drop_table("dependency_edges")
    op.drop_table("processed_events")
    op.drop_table("pending_royalties")
    op.drop_table("sales")
    op.drop_table("artifact_publications")
