"""enrolment waitlist

Revision ID: ew001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "ew001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Collaborator tables (owned by contacts/students modules) ---
    op.create_table(
        "guardians",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_guardians_organization_id", "guardians", ["organization_id"])
    op.create_index("ix_guardians_email", "guardians", ["email"])

    op.create_table(
        "students",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("default_teacher_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_students_organization_id", "students", ["organization_id"])

    op.create_table(
        "student_guardians",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("student_id", sa.String(), nullable=False),
        sa.Column("guardian_id", sa.String(), nullable=False),
        sa.Column("relationship", sa.String(), nullable=False, server_default="parent"),
        sa.Column(
            "is_primary_payer", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guardian_id"], ["guardians.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("student_id", "guardian_id", name="unique_student_guardian"),
    )
    op.create_index(
        "ix_student_guardians_organization_id", "student_guardians", ["organization_id"]
    )
    op.create_index("ix_student_guardians_student_id", "student_guardians", ["student_id"])
    op.create_index("ix_student_guardians_guardian_id", "student_guardians", ["guardian_id"])

    # --- Per-organisation waitlist settings ---
    op.create_table(
        "organisation_waitlist_settings",
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("offer_expiry_hours", sa.Integer(), nullable=False, server_default="48"),
        sa.Column("waitlist_expiry_weeks", sa.Integer(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("organization_id"),
        sa.CheckConstraint(
            "offer_expiry_hours BETWEEN 1 AND 720", name="ck_ows_offer_expiry_hours"
        ),
        sa.CheckConstraint(
            "waitlist_expiry_weeks IS NULL OR waitlist_expiry_weeks BETWEEN 1 AND 520",
            name="ck_ows_waitlist_expiry_weeks",
        ),
    )

    # --- Enrolment waitlist ---
    op.create_table(
        "enrolment_waitlist",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("lead_id", sa.String(), nullable=True),
        sa.Column("contact_name", sa.String(), nullable=False),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("contact_phone", sa.String(), nullable=True),
        sa.Column("guardian_id", sa.String(), nullable=True),
        sa.Column("child_first_name", sa.String(), nullable=False),
        sa.Column("child_last_name", sa.String(), nullable=True),
        sa.Column("child_age", sa.Integer(), nullable=True),
        sa.Column("instrument_id", sa.String(), nullable=True),
        sa.Column("instrument_name", sa.String(), nullable=False),
        sa.Column("lesson_duration_mins", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("preferred_teacher_id", sa.String(), nullable=True),
        sa.Column("preferred_location_id", sa.String(), nullable=True),
        sa.Column("preferred_days", JSONB, nullable=True),
        sa.Column("preferred_time_earliest", sa.Time(), nullable=True),
        sa.Column("preferred_time_latest", sa.Time(), nullable=True),
        sa.Column("experience_level", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="waiting"),
        sa.Column("priority", sa.String(), nullable=False, server_default="normal"),
        sa.Column("source", sa.String(), nullable=False, server_default="manual"),
        sa.Column("offered_slot_day", sa.String(), nullable=True),
        sa.Column("offered_slot_time", sa.Time(), nullable=True),
        sa.Column("offered_teacher_id", sa.String(), nullable=True),
        sa.Column("offered_location_id", sa.String(), nullable=True),
        sa.Column("offered_rate_minor", sa.Integer(), nullable=True),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("offer_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_student_id", sa.String(), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["guardian_id"], ["guardians.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["converted_student_id"], ["students.id"], ondelete="SET NULL"
        ),
        sa.CheckConstraint(
            "status IN ('waiting', 'offered', 'accepted', 'declined', 'expired', "
            "'withdrawn', 'lost', 'enrolled')",
            name="ck_ewl_status",
        ),
        sa.CheckConstraint(
            "priority IN ('normal', 'high', 'urgent')", name="ck_ewl_priority"
        ),
        sa.CheckConstraint(
            "source IN ('manual', 'lead_pipeline', 'booking_page', 'parent_portal', 'website')",
            name="ck_ewl_source",
        ),
        sa.CheckConstraint(
            "status = 'waiting' OR position IS NULL", name="ck_ewl_position_only_waiting"
        ),
    )
    op.create_index(
        "ix_enrolment_waitlist_organization_id", "enrolment_waitlist", ["organization_id"]
    )
    op.create_index(
        "ix_ewl_partition",
        "enrolment_waitlist",
        ["organization_id", "instrument_name", "status", "position"],
    )
    op.create_index("ix_ewl_org_status", "enrolment_waitlist", ["organization_id", "status"])
    op.create_index(
        "ix_ewl_offer_expires",
        "enrolment_waitlist",
        ["offer_expires_at"],
        postgresql_where=sa.text("status = 'offered'"),
    )

    # --- Activity log (append-only) ---
    op.create_table(
        "enrolment_waitlist_activity",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("waitlist_id", sa.String(), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["waitlist_id"], ["enrolment_waitlist.id"]),
    )
    op.create_index(
        "ix_enrolment_waitlist_activity_organization_id",
        "enrolment_waitlist_activity",
        ["organization_id"],
    )
    op.create_index(
        "ix_enrolment_waitlist_activity_waitlist_id",
        "enrolment_waitlist_activity",
        ["waitlist_id"],
    )


def downgrade() -> None:
    op.drop_table("enrolment_waitlist_activity")
    op.drop_index("ix_ewl_offer_expires", table_name="enrolment_waitlist")
    op.drop_index("ix_ewl_org_status", table_name="enrolment_waitlist")
    op.drop_index("ix_ewl_partition", table_name="enrolment_waitlist")
    op.drop_index("ix_enrolment_waitlist_organization_id", table_name="enrolment_waitlist")
    op.drop_table("enrolment_waitlist")
    op.drop_table("organisation_waitlist_settings")
    op.drop_table("student_guardians")
    op.drop_table("students")
    op.drop_table("guardians")
