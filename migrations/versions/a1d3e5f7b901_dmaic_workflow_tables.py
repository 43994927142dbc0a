"""dmaic_workflow_tables

Create the DMAIC project table and one child table per artifact kind.

Revision ID: a1d3e5f7b901
Revises:
Create Date: 2026-10-19 09:00:00.000000

Changes:
  - dmaic_projects
  - dmaic_requirements, dmaic_ctq_items, dmaic_constraints      (DEFINE)
  - dmaic_kpis                                                  (MEASURE)
  - dmaic_fmea_items (S/O/D check constraints, RPN derived)     (ANALYZE)
  - dmaic_solutions                                             (IMPROVE)
  - dmaic_control_checklists (one row per project)              (CONTROL)
  - dmaic_phase_artifacts (phase-tagged JSON documents)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1d3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


_CHILD_TABLES = (
    "dmaic_phase_artifacts",
    "dmaic_control_checklists",
    "dmaic_solutions",
    "dmaic_fmea_items",
    "dmaic_kpis",
    "dmaic_constraints",
    "dmaic_ctq_items",
    "dmaic_requirements",
)


def _project_fk():
    return sa.Column(
        "project_id", sa.String(length=36),
        sa.ForeignKey("dmaic_projects.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "dmaic_projects" not in existing_tables:
        op.create_table(
            "dmaic_projects",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("business_case", sa.Text(), nullable=False),
            sa.Column("deployment_target", sa.String(length=50), server_default="cloud"),
            sa.Column("budget_limit", sa.Float(), server_default="5000"),
            sa.Column("timeline_days", sa.Integer(), server_default="90"),
            sa.Column("current_phase", sa.String(length=20), nullable=False, server_default="DEFINE"),
            sa.Column("phase_completion", sa.Float(), nullable=False, server_default="0",
                      comment="0-100"),
            sa.Column("quality_score", sa.Float(), nullable=False, server_default="0",
                      comment="0-100"),
            sa.Column("risk_level", sa.String(length=10), nullable=False, server_default="LOW",
                      comment="LOW/MEDIUM/HIGH"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_projects_current_phase", "dmaic_projects", ["current_phase"])

    # ── DEFINE ──
    if "dmaic_requirements" not in existing_tables:
        op.create_table(
            "dmaic_requirements",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("requirement", sa.Text(), nullable=False),
            sa.Column("category", sa.String(length=20), server_default="functional"),
            sa.Column("priority", sa.String(length=10), server_default="MEDIUM"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_requirements_project_id", "dmaic_requirements", ["project_id"])

    if "dmaic_ctq_items" not in existing_tables:
        op.create_table(
            "dmaic_ctq_items",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("need", sa.Text(), nullable=False),
            sa.Column("driver", sa.Text(), nullable=False),
            sa.Column("ctq", sa.Text(), nullable=False),
            sa.Column("target", sa.Float(), nullable=False),
            sa.Column("usl", sa.Float(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_ctq_items_project_id", "dmaic_ctq_items", ["project_id"])

    if "dmaic_constraints" not in existing_tables:
        op.create_table(
            "dmaic_constraints",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("impact", sa.String(length=10), server_default="MEDIUM"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_constraints_project_id", "dmaic_constraints", ["project_id"])

    # ── MEASURE ──
    if "dmaic_kpis" not in existing_tables:
        op.create_table(
            "dmaic_kpis",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), server_default=""),
            sa.Column("target", sa.Float(), nullable=False),
            sa.Column("current_value", sa.Float(), server_default="0"),
            sa.Column("unit", sa.String(length=50), server_default=""),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_kpis_project_id", "dmaic_kpis", ["project_id"])

    # ── ANALYZE ──
    if "dmaic_fmea_items" not in existing_tables:
        op.create_table(
            "dmaic_fmea_items",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("failure_mode", sa.Text(), nullable=False),
            sa.Column("effects", sa.Text(), nullable=False),
            sa.Column("causes", sa.Text(), nullable=False),
            sa.Column("severity", sa.Integer(), nullable=False, comment="1-10"),
            sa.Column("occurrence", sa.Integer(), nullable=False, comment="1-10"),
            sa.Column("detection", sa.Integer(), nullable=False, comment="1-10"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("severity BETWEEN 1 AND 10", name="ck_fmea_severity"),
            sa.CheckConstraint("occurrence BETWEEN 1 AND 10", name="ck_fmea_occurrence"),
            sa.CheckConstraint("detection BETWEEN 1 AND 10", name="ck_fmea_detection"),
        )
        op.create_index("ix_dmaic_fmea_items_project_id", "dmaic_fmea_items", ["project_id"])

    # ── IMPROVE ──
    if "dmaic_solutions" not in existing_tables:
        op.create_table(
            "dmaic_solutions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), server_default=""),
            sa.Column("approach", sa.String(length=20), server_default="incremental"),
            sa.Column("impact_score", sa.Float(), server_default="0", comment="0-10"),
            sa.Column("effort_score", sa.Float(), server_default="0", comment="0-10"),
            sa.Column("risk_score", sa.Float(), server_default="0", comment="0-10"),
            sa.Column("cost_score", sa.Float(), server_default="0", comment="0-10"),
            sa.Column("status", sa.String(length=20), server_default="proposed"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_solutions_project_id", "dmaic_solutions", ["project_id"])
        op.create_index("ix_dmaic_solutions_status", "dmaic_solutions", ["status"])

    # ── CONTROL ──
    if "dmaic_control_checklists" not in existing_tables:
        op.create_table(
            "dmaic_control_checklists",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("monitoring", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("documentation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("validation", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("training", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("project_id", name="uq_dmaic_control_checklists_project"),
        )

    # ── Free-form phase artifacts ──
    if "dmaic_phase_artifacts" not in existing_tables:
        op.create_table(
            "dmaic_phase_artifacts",
            sa.Column("id", sa.String(length=36), primary_key=True),
            _project_fk(),
            sa.Column("phase", sa.String(length=20), nullable=False),
            sa.Column("artifact_type", sa.String(length=100), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_dmaic_phase_artifacts_project_id", "dmaic_phase_artifacts", ["project_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in _CHILD_TABLES:
        if table in existing_tables:
            op.drop_table(table)
    if "dmaic_projects" in existing_tables:
        op.drop_index("ix_dmaic_projects_current_phase", table_name="dmaic_projects")
        op.drop_table("dmaic_projects")
