"""SQLAlchemy table definitions.

Rows map onto the frozen dataclasses in coursetrack/models/; the Pg repos
convert between the two.  Content-item settings live in a JSONB column
keyed by content_type.  Attempts get their own table so appending one is
a single INSERT guarded by a unique key.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Identity,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from coursetrack.db.engine import Base

# --- Catalog ---


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|published|archived
    topic_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )
    requires_sequential: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    bundle_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TopicRow(Base):
    __tablename__ = "topics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    unlock_condition: Mapped[str] = mapped_column(
        String(32), nullable=False, default="immediate"
    )  # immediate|previous_completed|quiz_passed
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ContentItemRow(Base):
    __tablename__ = "content_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    topic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # video|reading|quiz|homework|live_session
    settings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    prerequisites: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )
    dependencies: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=list
    )
    unlock_condition: Mapped[str] = mapped_column(
        String(32), nullable=False, default="immediate"
    )


# --- Enrollments and progress ---


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    student_id: Mapped[str] = mapped_column(String(320), primary_key=True)
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), primary_key=True
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="active"
    )  # active|completed|paused|cancelled
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    enrolled_at: Mapped[int] = mapped_column(Integer, nullable=False)
    last_accessed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    starting_order: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ContentProgressRow(Base):
    __tablename__ = "content_progress"

    student_id: Mapped[str] = mapped_column(String(320), primary_key=True)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    content_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    # insertion order of entries within an enrollment
    seq: Mapped[int] = mapped_column(BigInteger, Identity(), nullable=False)
    topic_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    content_type: Mapped[str] = mapped_column(String(32), nullable=False)
    completion_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="not_started"
    )  # not_started|in_progress|completed|failed
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    time_spent: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    last_accessed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    best_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    watch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_position: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    applied_signals: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["student_id", "course_id"],
            ["enrollments.student_id", "enrollments.course_id"],
            ondelete="CASCADE",
        ),
    )


class ContentAttemptRow(Base):
    __tablename__ = "content_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    student_id: Mapped[str] = mapped_column(String(320), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    content_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    attempt_key: Mapped[str] = mapped_column(String(255), nullable=False)
    attempt_no: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", "content_id", "attempt_key"),
        ForeignKeyConstraint(
            ["student_id", "course_id", "content_id"],
            [
                "content_progress.student_id",
                "content_progress.course_id",
                "content_progress.content_id",
            ],
            ondelete="CASCADE",
        ),
    )


# --- Collaborator directories ---


class QuestionBankRow(Base):
    __tablename__ = "question_banks"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    registered_at: Mapped[int] = mapped_column(Integer, nullable=False)
