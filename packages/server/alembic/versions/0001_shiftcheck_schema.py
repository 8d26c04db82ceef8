"""ShiftCheck schema: roster, locations, templates, submissions and review history.

Revision ID: 0001_shiftcheck_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_shiftcheck_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _org_fk() -> sa.Column:
    return sa.Column("org_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Tenants & identity
    # -----------------------------------------------------------------------

    op.create_table(
        "organizations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("settings", sa.JSON(), nullable=False, server_default="{}"),
        *_timestamps(),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])

    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.Text(), nullable=True, unique=True),
        sa.Column("display_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "memberships",
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("org_id", UUID, sa.ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="employee"),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("pin_digest", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint(
            "role IN ('administrator', 'manager', 'employee')", name="ck_memberships_role"
        ),
        sa.UniqueConstraint("org_id", "pin_digest", name="uq_memberships_org_pin"),
    )
    op.create_index("ix_memberships_pin_digest", "memberships", ["pin_digest"])

    # -----------------------------------------------------------------------
    # 2. Locations, time blocks, templates
    # -----------------------------------------------------------------------

    op.create_table(
        "locations",
        sa.Column("id", UUID, primary_key=True),
        _org_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("timezone", sa.Text(), nullable=False, server_default="UTC"),
        *_timestamps(),
    )
    op.create_index("ix_locations_org_id", "locations", ["org_id"])

    op.create_table(
        "time_blocks",
        sa.Column("id", UUID, primary_key=True),
        _org_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
    )
    op.create_index("ix_time_blocks_org_id", "time_blocks", ["org_id"])

    op.create_table(
        "checklist_templates",
        sa.Column("id", UUID, primary_key=True),
        _org_fk(),
        sa.Column("location_id", UUID, sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("time_block_id", UUID, sa.ForeignKey("time_blocks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("recurrence", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("signoff_method", sa.Text(), nullable=False, server_default="PIN"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_checklist_templates_org_id", "checklist_templates", ["org_id"])
    op.create_index("ix_checklist_templates_location_id", "checklist_templates", ["location_id"])

    op.create_table(
        "template_tasks",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "template_id", UUID,
            sa.ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False,
        ),
        _org_fk(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False, server_default=""),
        sa.Column("input_type", sa.Text(), nullable=False, server_default="checkbox"),
        sa.Column("min", sa.Float(), nullable=True),
        sa.Column("max", sa.Float(), nullable=True),
        sa.Column("photo_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("note_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_na", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "input_type IN ('checkbox', 'number', 'text')", name="ck_template_tasks_input_type"
        ),
        sa.CheckConstraint("priority BETWEEN 1 AND 4", name="ck_template_tasks_priority"),
    )
    op.create_index("ix_template_tasks_template_id", "template_tasks", ["template_id"])
    op.create_index("ix_template_tasks_org_id", "template_tasks", ["org_id"])

    # -----------------------------------------------------------------------
    # 3. Submissions & review history
    # -----------------------------------------------------------------------

    op.create_table(
        "submissions",
        sa.Column("id", UUID, primary_key=True),
        _org_fk(),
        sa.Column("tasklist_id", UUID, sa.ForeignKey("checklist_templates.id"), nullable=False),
        sa.Column("location_id", UUID, sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="Pending"),
        sa.Column("signed_by", sa.Text(), nullable=True),
        sa.Column("signed_by_id", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("submitted_by", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tasklist_id", "location_id", "date", name="uq_submissions_natural_key"),
        sa.CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rework')", name="ck_submissions_status"
        ),
    )
    op.create_index("ix_submissions_org_id", "submissions", ["org_id"])
    op.create_index("ix_submissions_tasklist_id", "submissions", ["tasklist_id"])
    op.create_index("ix_submissions_location_id", "submissions", ["location_id"])
    op.create_index("ix_submissions_date", "submissions", ["date"])

    op.create_table(
        "submission_tasks",
        sa.Column(
            "submission_id", UUID,
            sa.ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("task_id", UUID, primary_key=True),
        _org_fk(),
        sa.Column("status", sa.Text(), nullable=False, server_default="Incomplete"),
        sa.Column("review_status", sa.Text(), nullable=False, server_default="Pending"),
        sa.Column("na", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("photos", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("rework_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("submitted_by", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("definition", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('Incomplete', 'Complete')", name="ck_submission_tasks_status"
        ),
        sa.CheckConstraint(
            "review_status IN ('Pending', 'Approved', 'Rework')",
            name="ck_submission_tasks_review_status",
        ),
        sa.CheckConstraint("rework_count >= 0", name="ck_submission_tasks_rework_count"),
    )
    op.create_index("ix_submission_tasks_org_id", "submission_tasks", ["org_id"])

    op.create_table(
        "review_entries",
        sa.Column("id", UUID, primary_key=True),
        _org_fk(),
        sa.Column(
            "submission_id", UUID,
            sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("task_id", UUID, nullable=False),
        sa.Column("review_status", sa.Text(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("reviewer_id", UUID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_review_entries_submission_id", "review_entries", ["submission_id"])
    op.create_index("ix_review_entries_task_id", "review_entries", ["task_id"])

    # Review history is append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_review_entry_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'review_entries is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER review_entries_immutable
        BEFORE UPDATE OR DELETE ON review_entries
        FOR EACH ROW EXECUTE FUNCTION prevent_review_entry_mutation();
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS review_entries_immutable ON review_entries")
    op.execute("DROP FUNCTION IF EXISTS prevent_review_entry_mutation()")
    for table in (
        "review_entries",
        "submission_tasks",
        "submissions",
        "template_tasks",
        "checklist_templates",
        "time_blocks",
        "locations",
        "memberships",
        "users",
        "organizations",
    ):
        op.drop_table(table)
