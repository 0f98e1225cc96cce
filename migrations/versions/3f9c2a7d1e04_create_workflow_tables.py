"""create_workflow_tables

Create `workflow_configurations` (versioned field definitions per
operational level) and `transactions` (delivery state per level).

Revision ID: 3f9c2a7d1e04
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "3f9c2a7d1e04"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "workflow_configurations" not in existing_tables:
        op.create_table(
            "workflow_configurations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("lineage_id", sa.String(length=36), nullable=True),
            sa.Column("factory_id", sa.String(length=36), nullable=True),
            sa.Column("operational_level", sa.Integer(), nullable=False, comment="1..7"),
            sa.Column("field_name", sa.String(length=100), nullable=False),
            sa.Column("field_label", sa.String(length=255), nullable=True),
            sa.Column("field_type", sa.String(length=50), nullable=False, server_default="TEXT"),
            sa.Column("capture_type", sa.String(length=20), nullable=False, server_default="MANUAL"),
            sa.Column("validation_type", sa.String(length=20), nullable=False, server_default="REQUIRED"),
            sa.Column("editability", sa.String(length=20), nullable=False, server_default="EDITABLE"),
            sa.Column("min_photo_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_photo_count", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("validation_rules", sa.JSON(), nullable=True),
            sa.Column("role_permissions", sa.JSON(), nullable=True),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("help_text", sa.String(length=255), nullable=True),
            sa.Column("placeholder", sa.String(length=255), nullable=True),
            sa.Column("conditional_logic", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
            sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

        op.create_index("ix_workflow_configurations_tenant_id", "workflow_configurations", ["tenant_id"])
        op.create_index("ix_workflow_configurations_lineage_id", "workflow_configurations", ["lineage_id"])
        op.create_index("ix_workflow_configurations_factory_id", "workflow_configurations", ["factory_id"])
        op.create_index("ix_workflow_configurations_is_active", "workflow_configurations", ["is_active"])
        op.create_index(
            "ix_wc_scope_level",
            "workflow_configurations",
            ["tenant_id", "factory_id", "operational_level"],
        )
        op.create_index(
            "uq_wc_active_factory_field",
            "workflow_configurations",
            ["tenant_id", "factory_id", "operational_level", "field_name"],
            unique=True,
            postgresql_where=sa.text("is_active IS TRUE AND factory_id IS NOT NULL"),
            sqlite_where=sa.text("is_active = 1 AND factory_id IS NOT NULL"),
        )
        op.create_index(
            "uq_wc_active_tenant_field",
            "workflow_configurations",
            ["tenant_id", "operational_level", "field_name"],
            unique=True,
            postgresql_where=sa.text("is_active IS TRUE AND factory_id IS NULL"),
            sqlite_where=sa.text("is_active = 1 AND factory_id IS NULL"),
        )

    if "transactions" not in existing_tables:
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("factory_id", sa.String(length=36), nullable=False),
            sa.Column("transaction_number", sa.String(length=50), nullable=True),
            sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("level_data", sa.JSON(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("transaction_number"),
        )

        op.create_index("ix_transactions_tenant_id", "transactions", ["tenant_id"])
        op.create_index("ix_transactions_tenant_factory", "transactions", ["tenant_id", "factory_id"])
        op.create_index("ix_transactions_tenant_status", "transactions", ["tenant_id", "status"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "transactions" in existing_tables:
        op.drop_index("ix_transactions_tenant_status", table_name="transactions")
        op.drop_index("ix_transactions_tenant_factory", table_name="transactions")
        op.drop_index("ix_transactions_tenant_id", table_name="transactions")
        op.drop_table("transactions")

    if "workflow_configurations" in existing_tables:
        op.drop_index("uq_wc_active_tenant_field", table_name="workflow_configurations")
        op.drop_index("uq_wc_active_factory_field", table_name="workflow_configurations")
        op.drop_index("ix_wc_scope_level", table_name="workflow_configurations")
        op.drop_index("ix_workflow_configurations_is_active", table_name="workflow_configurations")
        op.drop_index("ix_workflow_configurations_factory_id", table_name="workflow_configurations")
        op.drop_index("ix_workflow_configurations_lineage_id", table_name="workflow_configurations")
        op.drop_index("ix_workflow_configurations_tenant_id", table_name="workflow_configurations")
        op.drop_table("workflow_configurations")
