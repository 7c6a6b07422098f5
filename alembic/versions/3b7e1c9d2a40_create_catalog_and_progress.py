"""create catalog and progress tables

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-12 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    op.create_table(
        "courses",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column(
            "topic_ids", postgresql.ARRAY(_UUID), nullable=False, server_default="{}"
        ),
        sa.Column(
            "requires_sequential", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("bundle_id", _UUID, nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_courses_bundle_id", "courses", ["bundle_id"])

    op.create_table(
        "topics",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "unlock_condition", sa.String(length=32), nullable=False, server_default="immediate"
        ),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_topics_course_id", "topics", ["course_id"])

    op.create_table(
        "content_items",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column(
            "topic_id",
            _UUID,
            sa.ForeignKey("topics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(length=32), nullable=False),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "prerequisites", postgresql.ARRAY(_UUID), nullable=False, server_default="{}"
        ),
        sa.Column(
            "dependencies", postgresql.ARRAY(_UUID), nullable=False, server_default="{}"
        ),
        sa.Column(
            "unlock_condition", sa.String(length=32), nullable=False, server_default="immediate"
        ),
    )
    op.create_index("ix_content_items_topic_id", "content_items", ["topic_id"])

    op.create_table(
        "enrollments",
        sa.Column("student_id", sa.String(length=320), primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), primary_key=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("enrolled_at", sa.Integer(), nullable=False),
        sa.Column("last_accessed", sa.Integer(), nullable=True),
        sa.Column("starting_order", sa.Integer(), nullable=True),
    )

    op.create_table(
        "content_progress",
        sa.Column("student_id", sa.String(length=320), primary_key=True),
        sa.Column("course_id", _UUID, primary_key=True),
        sa.Column("content_id", _UUID, primary_key=True),
        sa.Column("seq", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("topic_id", _UUID, nullable=False),
        sa.Column("content_type", sa.String(length=32), nullable=False),
        sa.Column(
            "completion_status",
            sa.String(length=32),
            nullable=False,
            server_default="not_started",
        ),
        sa.Column("progress_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("time_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_accessed_at", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.Integer(), nullable=True),
        sa.Column("best_score", sa.Float(), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("watch_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_position", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "applied_signals",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
        sa.ForeignKeyConstraint(
            ["student_id", "course_id"],
            ["enrollments.student_id", "enrollments.course_id"],
            ondelete="CASCADE",
        ),
    )

    op.create_table(
        "content_attempts",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("student_id", sa.String(length=320), nullable=False),
        sa.Column("course_id", _UUID, nullable=False),
        sa.Column("content_id", _UUID, nullable=False),
        sa.Column("attempt_key", sa.String(length=255), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("correct_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.Integer(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("student_id", "course_id", "content_id", "attempt_key"),
        sa.ForeignKeyConstraint(
            ["student_id", "course_id", "content_id"],
            [
                "content_progress.student_id",
                "content_progress.course_id",
                "content_progress.content_id",
            ],
            ondelete="CASCADE",
        ),
    )


def downgrade() -> None:
    op.drop_table("content_attempts")
    op.drop_table("content_progress")
    op.drop_table("enrollments")
    op.drop_index("ix_content_items_topic_id", table_name="content_items")
    op.drop_table("content_items")
    op.drop_index("ix_topics_course_id", table_name="topics")
    op.drop_table("topics")
    op.drop_index("ix_courses_bundle_id", table_name="courses")
    op.drop_table("courses")
