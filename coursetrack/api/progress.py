"""Student-facing progress endpoints.

The caller is always the student: ``principal.user_id`` is the
enrollment key.  Writes go through progress_service.record_signal, which
applies one signal to one Content-Progress entry under that entry's lock.
Summaries are recomputed from entries on every read.
"""

from __future__ import annotations

import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from coursetrack.api.dependencies import (
    Catalog,
    Enrollments,
    Notifications,
    http_error,
    require_user,
)
from coursetrack.core.errors import ProgressEngineError
from coursetrack.models.catalog import CourseOutline, Topic
from coursetrack.models.enrollment import ContentProgress, Enrollment
from coursetrack.models.principal import Principal
from coursetrack.models.signals import AttemptSignal, ViewSignal, WatchData, WatchSegment
from coursetrack.services import progress_service
from coursetrack.services.aggregator import CourseProgress
from coursetrack.services.progress_service import ProgressSummary, SignalOutcome
from coursetrack.services.unlock import UnlockStatus

router = APIRouter(prefix="/v1/progress", tags=["progress"])


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class WatchSegmentIn(BaseModel):
    start: float
    end: float


class WatchDataIn(BaseModel):
    watched_segments: list[WatchSegmentIn] = []
    video_duration: float = 0
    reported_percentage: float = 0


class ViewIn(BaseModel):
    progress_percentage: float = 0
    viewed: bool = False
    time_spent: float = Field(default=0, description="Cumulative minutes on this item")
    last_position: float = 0
    watch_data: WatchDataIn | None = None
    signal_id: str | None = Field(default=None, max_length=255)
    occurred_at: int | None = None


class AttemptIn(BaseModel):
    attempt_key: str = Field(min_length=1, max_length=255)
    score: float
    correct_count: int = 0
    total_count: int = 0
    answered_question_ids: list[UUID] = []
    started_at: int | None = None
    occurred_at: int | None = None


class AttemptOut(BaseModel):
    attempt_key: str
    attempt_no: int
    score: float
    correct_count: int
    total_count: int
    started_at: int
    submitted_at: int
    passed: bool


class EntryOut(BaseModel):
    content_id: UUID
    topic_id: UUID
    content_type: str
    completion_status: str
    progress_percentage: float
    time_spent: float
    last_accessed_at: int | None
    completed_at: int | None
    attempts: list[AttemptOut]
    best_score: float | None
    total_points: int
    watch_count: int
    last_position: float


class ContentStateOut(BaseModel):
    content_id: UUID
    title: str
    content_type: str
    completion_status: str
    progress_percentage: float
    best_score: float | None


class TopicProgressOut(BaseModel):
    topic_id: UUID
    completed_count: int
    total_count: int
    percentage: float
    contents: list[ContentStateOut] = []


class CourseProgressOut(BaseModel):
    completed_count: int
    total_count: int
    percentage: float
    topics: list[TopicProgressOut]


class ProgressSummaryOut(BaseModel):
    student_id: str
    course_id: UUID
    enrollment_status: str
    enrolled_at: int
    last_accessed: int | None
    progress: CourseProgressOut
    entries: list[EntryOut]


class SignalOut(BaseModel):
    applied: bool
    newly_completed: bool
    entry: EntryOut
    course_progress: float


class NextContentOut(BaseModel):
    id: UUID
    title: str
    type: str


class ContentUnlockOut(BaseModel):
    unlocked: bool
    reason: str
    missing: list[UUID]
    next_content: NextContentOut | None = None


class CourseUnlockOut(BaseModel):
    unlocked: bool
    reason: str
    missing: list[UUID]


# ---------------------------------------------------------------------------
# Converters (shared with the admin endpoints)
# ---------------------------------------------------------------------------


def entry_out(entry: ContentProgress) -> EntryOut:
    return EntryOut(
        content_id=entry.content_id,
        topic_id=entry.topic_id,
        content_type=entry.content_type,
        completion_status=entry.completion_status,
        progress_percentage=entry.progress_percentage,
        time_spent=entry.time_spent,
        last_accessed_at=entry.last_accessed_at,
        completed_at=entry.completed_at,
        attempts=[
            AttemptOut(
                attempt_key=a.attempt_key,
                attempt_no=a.attempt_no,
                score=a.score,
                correct_count=a.correct_count,
                total_count=a.total_count,
                started_at=a.started_at,
                submitted_at=a.submitted_at,
                passed=a.passed,
            )
            for a in entry.attempts
        ],
        best_score=entry.best_score,
        total_points=entry.total_points,
        watch_count=entry.watch_count,
        last_position=entry.last_position,
    )


def _content_states(topic: Topic, enrollment: Enrollment) -> list[ContentStateOut]:
    """One row per catalog item, whether or not the student has touched it."""
    states = []
    for item in topic.ordered_contents():
        entry = enrollment.entry_for(item.id)
        states.append(
            ContentStateOut(
                content_id=item.id,
                title=item.title,
                content_type=item.type,
                completion_status=entry.completion_status if entry else "not_started",
                progress_percentage=entry.progress_percentage if entry else 0,
                best_score=entry.best_score if entry else None,
            )
        )
    return states


def course_progress_out(
    course: CourseProgress, outline: CourseOutline, enrollment: Enrollment
) -> CourseProgressOut:
    topics = {t.id: t for t in outline.topics}
    return CourseProgressOut(
        completed_count=course.completed_count,
        total_count=course.total_count,
        percentage=course.percentage,
        topics=[
            TopicProgressOut(
                topic_id=t.topic_id,
                completed_count=t.completed_count,
                total_count=t.total_count,
                percentage=t.percentage,
                contents=_content_states(topics[t.topic_id], enrollment),
            )
            for t in course.topics
        ],
    )


def summary_out(summary: ProgressSummary) -> ProgressSummaryOut:
    e = summary.enrollment
    return ProgressSummaryOut(
        student_id=e.student_id,
        course_id=e.course_id,
        enrollment_status=e.status,
        enrolled_at=e.enrolled_at,
        last_accessed=e.last_accessed,
        progress=course_progress_out(summary.course, summary.outline, e),
        entries=[entry_out(x) for x in e.entries],
    )


def _signal_out(outcome: SignalOutcome) -> SignalOut:
    return SignalOut(
        applied=outcome.applied,
        newly_completed=outcome.newly_completed,
        entry=entry_out(outcome.entry),
        course_progress=outcome.course.percentage,
    )


def _unlock_out(status_: UnlockStatus) -> CourseUnlockOut:
    return CourseUnlockOut(
        unlocked=status_.unlocked, reason=status_.reason, missing=list(status_.missing)
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/{course_id}", response_model=ProgressSummaryOut)
async def get_progress(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    catalog: Catalog,
    enrollments: Enrollments,
) -> ProgressSummaryOut:
    try:
        summary = await progress_service.progress_summary(
            catalog, enrollments, principal.user_id, course_id
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return summary_out(summary)


@router.post(
    "/{course_id}/contents/{content_id}/views",
    response_model=SignalOut,
    status_code=status.HTTP_200_OK,
)
async def record_view(
    course_id: UUID,
    content_id: UUID,
    body: ViewIn,
    principal: Annotated[Principal, Depends(require_user)],
    catalog: Catalog,
    enrollments: Enrollments,
    outbox: Notifications,
) -> SignalOut:
    watch = None
    if body.watch_data is not None:
        watch = WatchData(
            watched_segments=tuple(
                WatchSegment(start=s.start, end=s.end) for s in body.watch_data.watched_segments
            ),
            video_duration=body.watch_data.video_duration,
            reported_percentage=body.watch_data.reported_percentage,
        )
    signal = ViewSignal(
        occurred_at=body.occurred_at or _now(),
        progress_percentage=body.progress_percentage,
        viewed=body.viewed,
        time_spent=body.time_spent,
        last_position=body.last_position,
        watch=watch,
        signal_id=body.signal_id,
    )
    try:
        outcome = await progress_service.record_signal(
            catalog,
            enrollments,
            principal.user_id,
            course_id,
            content_id,
            signal,
            outbox=outbox,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _signal_out(outcome)


@router.post(
    "/{course_id}/contents/{content_id}/attempts",
    response_model=SignalOut,
    status_code=status.HTTP_200_OK,
)
async def record_attempt(
    course_id: UUID,
    content_id: UUID,
    body: AttemptIn,
    principal: Annotated[Principal, Depends(require_user)],
    catalog: Catalog,
    enrollments: Enrollments,
    outbox: Notifications,
) -> SignalOut:
    now = _now()
    signal = AttemptSignal(
        attempt_key=body.attempt_key,
        occurred_at=body.occurred_at or now,
        score=body.score,
        correct_count=body.correct_count,
        total_count=body.total_count,
        answered_question_ids=frozenset(body.answered_question_ids),
        started_at=body.started_at,
    )
    try:
        outcome = await progress_service.record_signal(
            catalog,
            enrollments,
            principal.user_id,
            course_id,
            content_id,
            signal,
            outbox=outbox,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _signal_out(outcome)


@router.get("/{course_id}/contents/{content_id}/unlock", response_model=ContentUnlockOut)
async def get_content_unlock(
    course_id: UUID,
    content_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    catalog: Catalog,
    enrollments: Enrollments,
) -> ContentUnlockOut:
    try:
        unlock, nxt = await progress_service.content_unlock(
            catalog, enrollments, principal.user_id, course_id, content_id
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return ContentUnlockOut(
        unlocked=unlock.unlocked,
        reason=unlock.reason,
        missing=list(unlock.missing),
        next_content=(
            NextContentOut(id=nxt.id, title=nxt.title, type=nxt.type) if nxt else None
        ),
    )


@router.get("/{course_id}/unlock", response_model=CourseUnlockOut)
async def get_course_unlock(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    catalog: Catalog,
    enrollments: Enrollments,
) -> CourseUnlockOut:
    try:
        unlock = await progress_service.course_unlock(
            catalog, enrollments, principal.user_id, course_id
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _unlock_out(unlock)
