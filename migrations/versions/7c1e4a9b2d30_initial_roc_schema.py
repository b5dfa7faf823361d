"""initial_roc_schema

Creates the progress tracking schema:
  - projects              — scope for everything below
  - milestone_templates   — per-project ordered milestone/weight lists
  - drawings              — canonical drawing sheets per project
  - components            — one row per physical instance on a drawing
  - component_milestones  — milestone rows with snapshotted weights
  - import_jobs           — bulk import batches and their outcomes
  - audit_logs            — append-only mutation log

Tables created conditionally (IF NOT EXISTS semantics) so the migration can
run against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-17 09:12:41.208311
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e4a9b2d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Projects ──────────────────────────────────────────────────────────
    if "projects" not in existing:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    # ── Milestone Templates ───────────────────────────────────────────────
    if "milestone_templates" not in existing:
        op.create_table(
            "milestone_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=60), nullable=False,
                      comment="FULL | REDUCED | THREADED | … | custom"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("milestones", sa.JSON(), nullable=False,
                      comment='[{"name": "Receive", "weight": 10.0, "order": 1}]'),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("is_system", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "name", name="uq_milestone_templates_project_name"),
        )
        op.create_index("ix_milestone_templates_project_id", "milestone_templates", ["project_id"])

    # ── Drawings ──────────────────────────────────────────────────────────
    if "drawings" not in existing:
        op.create_table(
            "drawings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("number", sa.String(length=120), nullable=False,
                      comment="Canonical: '<base> NNofMM'"),
            sa.Column("base_number", sa.String(length=100), nullable=False),
            sa.Column("sheet_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("total_sheets", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "number", name="uq_drawings_project_number"),
        )
        op.create_index("ix_drawings_project_id", "drawings", ["project_id"])
        op.create_index("ix_drawings_project_base", "drawings", ["project_id", "base_number"])

    # ── Components ────────────────────────────────────────────────────────
    if "components" not in existing:
        op.create_table(
            "components",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("drawing_id", sa.Integer(), nullable=False),
            sa.Column("milestone_template_id", sa.Integer(), nullable=False),
            sa.Column("component_id", sa.String(length=100), nullable=False,
                      comment="Human component ID, e.g. VALVE-0004"),
            sa.Column("instance_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("total_instances_on_drawing", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("display_id", sa.String(length=160), nullable=False),
            sa.Column("component_type", sa.String(length=30), nullable=False, server_default="OTHER"),
            sa.Column("workflow_type", sa.String(length=30), nullable=False,
                      server_default="MILESTONE_DISCRETE"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("spec", sa.String(length=100), nullable=True),
            sa.Column("size", sa.String(length=50), nullable=True),
            sa.Column("material", sa.String(length=100), nullable=True),
            sa.Column("area", sa.String(length=100), nullable=True),
            sa.Column("system", sa.String(length=100), nullable=True),
            sa.Column("test_package", sa.String(length=100), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("quantity", sa.Float(), nullable=True),
            sa.Column("completion_percent", sa.Float(), nullable=False, server_default="0"),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["drawing_id"], ["drawings.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["milestone_template_id"], ["milestone_templates.id"],
                                    ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "component_id", "drawing_id", "instance_number",
                                name="uq_components_instance"),
        )
        op.create_index("ix_components_project_id", "components", ["project_id"])
        op.create_index("ix_components_drawing_id", "components", ["drawing_id"])
        op.create_index("ix_components_project_type", "components", ["project_id", "component_type"])

    # ── Component Milestones ──────────────────────────────────────────────
    if "component_milestones" not in existing:
        op.create_table(
            "component_milestones",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("component_id", sa.Integer(), nullable=False),
            sa.Column("milestone_name", sa.String(length=60), nullable=False),
            sa.Column("milestone_order", sa.Integer(), nullable=False, comment="1-based"),
            sa.Column("weight", sa.Float(), nullable=False, server_default="0"),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("percentage_complete", sa.Float(), nullable=True),
            sa.Column("quantity_complete", sa.Float(), nullable=True),
            sa.Column("quantity_total", sa.Float(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=150), nullable=True),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("component_id", "milestone_order", name="uq_component_milestone_order"),
        )
        op.create_index("ix_component_milestones_component_id", "component_milestones",
                        ["component_id"])

    # ── Import Jobs ───────────────────────────────────────────────────────
    if "import_jobs" not in existing:
        op.create_table(
            "import_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("filename", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("options", sa.JSON(), nullable=False),
            sa.Column("column_mapping", sa.JSON(), nullable=True),
            sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("errors", sa.JSON(), nullable=False),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_import_jobs_project_id", "import_jobs", ["project_id"])
        op.create_index("ix_import_jobs_project_status", "import_jobs", ["project_id", "status"])

    # ── Audit Logs ────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_project_id", "audit_logs", ["project_id"])
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project_ts", "audit_logs", ["project_id", "timestamp"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("import_jobs")
    op.drop_table("component_milestones")
    op.drop_table("components")
    op.drop_table("drawings")
    op.drop_table("milestone_templates")
    op.drop_table("projects")
