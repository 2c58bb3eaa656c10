"""Badges: student_badges, journal_entries, habit_logs, assignment publish time

Revision ID: 7d2f4a91c5e8
Revises: 4c1e9a7b2d30
Create Date: 2026-10-19 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "7d2f4a91c5e8"
down_revision = "4c1e9a7b2d30"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "assignments",
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "student_badges",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("badge_id", sa.String(40), nullable=False),
        sa.Column("awarded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("student_id", "badge_id", name="uq_student_badges_student_badge"),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_journal_entries_student", "journal_entries", ["student_id"])

    op.create_table(
        "habit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(36), nullable=False),
        sa.Column("log_date", sa.Date(), nullable=False),
        sa.Column("habit_type", sa.String(40), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("student_id", "log_date", "habit_type", name="uq_habit_logs_day"),
    )


def downgrade() -> None:
    op.drop_table("habit_logs")
    op.drop_index("ix_journal_entries_student", table_name="journal_entries")
    op.drop_table("journal_entries")
    op.drop_table("student_badges")
    op.drop_column("assignments", "created_at")
