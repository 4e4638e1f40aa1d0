"""initial_cellhub_schema

Organizations, persons, the cell directory and the multiplication workflow
tables, including the partial unique index that allows at most one
non-terminal process per source cell.

Revision ID: c3e1a7b90d12
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c3e1a7b90d12"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_WHERE = "status NOT IN ('completed', 'cancelled', 'rejected')"


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "persons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("leadership_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_persons_organization_id", "persons", ["organization_id"])

    op.create_table(
        "cells",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("parent_cell_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("leader_id", sa.Integer(), nullable=True),
        sa.Column("supervisor_id", sa.Integer(), nullable=True),
        sa.Column("meeting_day", sa.String(length=10), nullable=True),
        sa.Column("meeting_time", sa.String(length=5), nullable=True),
        sa.Column("address", sa.String(length=300), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=50), nullable=True),
        sa.Column("zip_code", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_cell_id"], ["cells.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["leader_id"], ["persons.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["supervisor_id"], ["persons.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cells_organization_id", "cells", ["organization_id"])
    op.create_index("ix_cells_parent_cell_id", "cells", ["parent_cell_id"])
    op.create_index("ix_cells_leader_id", "cells", ["leader_id"])
    op.create_index("ix_cells_supervisor_id", "cells", ["supervisor_id"])

    op.create_table(
        "cell_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cell_id", sa.Integer(), nullable=False),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("engagement_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_apprentice", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["cell_id"], ["cells.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["person_id"], ["persons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cell_id", "person_id", name="uq_cell_member_cell_person"),
    )
    op.create_index("ix_cell_members_cell_id", "cell_members", ["cell_id"])
    op.create_index("ix_cell_members_person_id", "cell_members", ["person_id"])

    op.create_table(
        "cell_meetings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cell_id", sa.Integer(), nullable=False),
        sa.Column("held_on", sa.Date(), nullable=False),
        sa.Column("attendance_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("members_enrolled", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["cell_id"], ["cells.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cell_meetings_cell_id", "cell_meetings", ["cell_id"])

    op.create_table(
        "multiplication_criteria",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("criteria_type", sa.String(length=30), nullable=False),
        sa.Column("threshold_value", sa.Float(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "name", name="uq_criterion_org_name"),
    )
    op.create_index(
        "ix_multiplication_criteria_organization_id", "multiplication_criteria", ["organization_id"],
    )

    op.create_table(
        "readiness_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("cell_id", sa.Integer(), nullable=False),
        sa.Column("readiness_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="not_ready"),
        sa.Column("criteria_results", sa.JSON(), nullable=True),
        sa.Column("facts", sa.JSON(), nullable=True),
        sa.Column("confidence_level", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("projected_date", sa.Date(), nullable=True),
        sa.Column("recommendations", sa.JSON(), nullable=True),
        sa.Column("blocking_factors", sa.JSON(), nullable=True),
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["cell_id"], ["cells.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cell_id"),
    )
    op.create_index(
        "ix_readiness_snapshots_organization_id", "readiness_snapshots", ["organization_id"],
    )

    op.create_table(
        "multiplication_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("template_type", sa.String(length=30), nullable=False, server_default="balanced"),
        sa.Column("member_split_strategy", sa.JSON(), nullable=True),
        sa.Column("leader_selection_criteria", sa.JSON(), nullable=True),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["persons.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_multiplication_templates_organization_id", "multiplication_templates", ["organization_id"],
    )

    op.create_table(
        "multiplication_processes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("source_cell_id", sa.Integer(), nullable=False),
        sa.Column("initiated_by", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="draft"),
        sa.Column("multiplication_plan", sa.JSON(), nullable=True),
        sa.Column("new_leader_id", sa.Integer(), nullable=True),
        sa.Column("new_cell_id", sa.Integer(), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("terminated_from", sa.String(length=30), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["source_cell_id"], ["cells.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["new_cell_id"], ["cells.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["initiated_by"], ["persons.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["new_leader_id"], ["persons.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by"], ["persons.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_multiplication_processes_organization_id", "multiplication_processes", ["organization_id"],
    )
    op.create_index(
        "ix_multiplication_processes_source_cell_id", "multiplication_processes", ["source_cell_id"],
    )
    op.create_index(
        "uq_multiplication_active_per_cell",
        "multiplication_processes",
        ["source_cell_id"],
        unique=True,
        postgresql_where=sa.text(_ACTIVE_WHERE),
        sqlite_where=sa.text(_ACTIVE_WHERE),
    )

    op.create_table(
        "member_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("multiplication_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("assignment_type", sa.String(length=20), nullable=False, server_default="undecided"),
        sa.Column("role_in_new_cell", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("priority_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("auto_suggested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("manually_adjusted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["multiplication_id"], ["multiplication_processes.id"], ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(["member_id"], ["persons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "multiplication_id", "member_id", name="uq_assignment_process_member",
        ),
    )
    op.create_index(
        "ix_member_assignments_multiplication_id", "member_assignments", ["multiplication_id"],
    )


def downgrade():
    op.drop_table("member_assignments")
    op.drop_index("uq_multiplication_active_per_cell", table_name="multiplication_processes")
    op.drop_table("multiplication_processes")
    op.drop_table("multiplication_templates")
    op.drop_table("readiness_snapshots")
    op.drop_table("multiplication_criteria")
    op.drop_table("cell_meetings")
    op.drop_table("cell_members")
    op.drop_table("cells")
    op.drop_table("persons")
    op.drop_table("organizations")
