"""Release plan schema: plans, phases, reschedules, references, history, base phases

Revision ID: a1c4e7f20b01
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "a1c4e7f20b01"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _plan_fk():
    return sa.Column(
        "plan_id", sa.String(36),
        sa.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade():
    # ── Reference data ──────────────────────────────────────────────────
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_table(
        "owners",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("email", sa.String(200), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "reschedule_types",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "plan_reference_types",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(20), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "features",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="planned"),
        *_timestamps(),
    )
    op.create_table(
        "base_phases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("color", sa.String(7), nullable=False, unique=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sequence", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "product_components",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "product_id", sa.String(36),
            sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("component_type", sa.String(30), nullable=True),
        sa.Column("current_version", sa.String(50), nullable=False, server_default=""),
        sa.Column("previous_version", sa.String(50), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_product_components_product_id", "product_components", ["product_id"])

    # ── Plan aggregate ──────────────────────────────────────────────────
    op.create_table(
        "plans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="planned"),
        sa.Column("release_status", sa.String(30), nullable=False, server_default="to_be_defined"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("it_owner_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True),
        sa.Column("lead_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True),
        sa.Column("feature_ids", sa.JSON(), nullable=True),
        sa.Column("calendar_ids", sa.JSON(), nullable=True),
        sa.Column("indicator_ids", sa.JSON(), nullable=True),
        sa.Column("team_ids", sa.JSON(), nullable=True),
        sa.Column("components", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "plan_phases",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("metric_values", sa.JSON(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_plan_phases_plan_id", "plan_phases", ["plan_id"])

    op.create_table(
        "plan_phase_reschedules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "plan_phase_id", sa.String(36),
            sa.ForeignKey("plan_phases.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("rescheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_start_date", sa.Date(), nullable=True),
        sa.Column("original_end_date", sa.Date(), nullable=True),
        sa.Column("new_start_date", sa.Date(), nullable=True),
        sa.Column("new_end_date", sa.Date(), nullable=True),
        sa.Column(
            "reschedule_type_id", sa.String(36),
            sa.ForeignKey("reschedule_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index(
        "idx_reschedule_phase_ts", "plan_phase_reschedules", ["plan_phase_id", "rescheduled_at"],
    )

    op.create_table(
        "plan_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("color", sa.String(20), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_plan_tasks_plan_id", "plan_tasks", ["plan_id"])

    op.create_table(
        "plan_milestones",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phase_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_plan_milestones_plan_id", "plan_milestones", ["plan_id"])

    op.create_table(
        "plan_references",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "plan_reference_type_id", sa.String(36),
            sa.ForeignKey("plan_reference_types.id"), nullable=False,
        ),
        sa.Column("period_day", sa.Date(), nullable=True),
        sa.Column("calendar_day_id", sa.String(36), nullable=True),
        sa.Column("phase_id", sa.String(36), nullable=True),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("milestone_color", sa.String(7), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_plan_references_plan_id", "plan_references", ["plan_id"])
    op.create_index(
        "ix_plan_references_plan_reference_type_id", "plan_references", ["plan_reference_type_id"],
    )
    op.create_index("idx_plan_ref_period_day", "plan_references", ["period_day"])
    op.create_index("idx_plan_ref_calendar_day", "plan_references", ["calendar_day_id"])

    op.create_table(
        "plan_component_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("component_id", sa.String(36), nullable=False),
        sa.Column("old_version", sa.String(50), nullable=False),
        sa.Column("new_version", sa.String(50), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_pcv_plan_component", "plan_component_versions", ["plan_id", "component_id"])

    op.create_table(
        "plan_rcas",
        sa.Column("id", sa.String(36), primary_key=True),
        _plan_fk(),
        sa.Column("support_ticket_number", sa.String(255), nullable=True),
        sa.Column("rca_number", sa.String(255), nullable=True),
        sa.Column("key_issues_tags", sa.JSON(), nullable=True),
        sa.Column("learnings_tags", sa.JSON(), nullable=True),
        sa.Column("technical_description", sa.Text(), nullable=True),
        sa.Column("reference_file_url", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_plan_rcas_plan_id", "plan_rcas", ["plan_id"])

    # ── Audit ───────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("plan_id", sa.String(36), nullable=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("actor", sa.String(150), nullable=False, server_default="system"),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_plan", "audit_logs", ["plan_id"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("plan_rcas")
    op.drop_table("plan_component_versions")
    op.drop_table("plan_references")
    op.drop_table("plan_milestones")
    op.drop_table("plan_tasks")
    op.drop_table("plan_phase_reschedules")
    op.drop_table("plan_phases")
    op.drop_table("plans")
    op.drop_table("product_components")
    op.drop_table("features")
    op.drop_table("base_phases")
    op.drop_table("plan_reference_types")
    op.drop_table("reschedule_types")
    op.drop_table("owners")
    op.drop_table("products")
