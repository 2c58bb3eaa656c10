"""Initial schema: XP ledger, gamification state, outcome attainment

Revision ID: 4c1e9a7b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4c1e9a7b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "xp_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("xp_amount", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(40), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_xp_transactions_student_time", "xp_transactions", ["student_id", "created_at"]
    )

    op.create_table(
        "bonus_xp_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("multiplier", sa.Float(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bonus_xp_events_window", "bonus_xp_events", ["start_date", "end_date"])

    op.create_table(
        "student_gamification",
        sa.Column("student_id", sa.String(36), primary_key=True),
        sa.Column("xp_total", sa.Integer(), server_default="0"),
        sa.Column("level", sa.Integer(), server_default="1"),
        sa.Column("streak_count", sa.Integer(), server_default="0"),
        sa.Column("last_login_date", sa.Date(), nullable=True),
        sa.Column("streak_freezes_available", sa.Integer(), server_default="0"),
        sa.Column("leaderboard_opt_out", sa.Boolean(), server_default="false"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_student_gamification_xp_desc", "student_gamification", ["xp_total"])

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("full_name", sa.String(200), nullable=False),
    )

    op.create_table(
        "course_enrollments",
        sa.Column("student_id", sa.String(36), primary_key=True),
        sa.Column("course_id", sa.String(36), primary_key=True),
    )
    op.create_index("ix_course_enrollments_course", "course_enrollments", ["course_id"])

    op.create_table(
        "learning_outcomes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tier", sa.String(3), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("course_id", sa.String(36), nullable=True),
        sa.Column("program_id", sa.String(36), nullable=True),
    )
    op.create_index("ix_learning_outcomes_tier", "learning_outcomes", ["tier"])

    op.create_table(
        "outcome_mappings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "source_outcome_id", sa.String(36),
            sa.ForeignKey("learning_outcomes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "target_outcome_id", sa.String(36),
            sa.ForeignKey("learning_outcomes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.UniqueConstraint(
            "source_outcome_id", "target_outcome_id",
            name="uq_outcome_mappings_source_target",
        ),
    )
    op.create_index("ix_outcome_mappings_target", "outcome_mappings", ["target_outcome_id"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("course_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("clo_weights", postgresql.JSONB(), nullable=True),
        sa.Column("total_marks", sa.Float(), server_default="100"),
    )

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "assignment_id", sa.String(36),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "grades",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "submission_id", sa.String(36),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("total_score", sa.Float(), server_default="0"),
        sa.Column("score_percent", sa.Float(), nullable=False),
        sa.Column("graded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "evidence",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("submission_id", sa.String(36), nullable=False),
        sa.Column("grade_id", sa.String(36), nullable=False),
        sa.Column("clo_id", sa.String(36), nullable=False),
        sa.Column("score_percent", sa.Float(), nullable=False),
        sa.Column("attainment_level", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("grade_id", "clo_id", name="uq_evidence_grade_clo"),
    )
    op.create_index("ix_evidence_student_clo", "evidence", ["student_id", "clo_id"])

    op.create_table(
        "outcome_attainment",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("outcome_id", sa.String(36), nullable=False),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("course_id", sa.String(36), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("attainment_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("sample_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "outcome_id", "student_id", "course_id", "scope",
            name="uq_outcome_attainment_key",
        ),
    )
    op.create_index(
        "ix_outcome_attainment_student", "outcome_attainment", ["student_id", "scope"]
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("read", sa.Boolean(), server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_time", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_time", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_outcome_attainment_student", table_name="outcome_attainment")
    op.drop_table("outcome_attainment")
    op.drop_index("ix_evidence_student_clo", table_name="evidence")
    op.drop_table("evidence")
    op.drop_table("grades")
    op.drop_table("submissions")
    op.drop_table("assignments")
    op.drop_index("ix_outcome_mappings_target", table_name="outcome_mappings")
    op.drop_table("outcome_mappings")
    op.drop_index("ix_learning_outcomes_tier", table_name="learning_outcomes")
    op.drop_table("learning_outcomes")
    op.drop_index("ix_course_enrollments_course", table_name="course_enrollments")
    op.drop_table("course_enrollments")
    op.drop_table("profiles")
    op.drop_index("ix_student_gamification_xp_desc", table_name="student_gamification")
    op.drop_table("student_gamification")
    op.drop_index("ix_bonus_xp_events_window", table_name="bonus_xp_events")
    op.drop_table("bonus_xp_events")
    op.drop_index("ix_xp_transactions_student_time", table_name="xp_transactions")
    op.drop_table("xp_transactions")
