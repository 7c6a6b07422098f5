"""Progress Store operations.

Every write to a Content-Progress entry funnels through
``upsert_progress``, which runs the completion evaluator inside the
repo's per-entry lock.  ``record_signal`` wraps it with the checks a
student-facing write needs (enrollment state, unlock state) and the side
effects that follow a change:

  - cached enrollment progress refreshed (enrollment marked completed at 100%)
  - analytics cache for the course invalidated
  - a notification staged for each new completion

Notifications go into an Outbox.  Callers that own a database
transaction pass their own and flush it after committing; otherwise the
outbox is flushed when the operation returns, and dropped if it raises.

Nothing here trusts ``Enrollment.progress``; summaries are always
recomputed from entries.
"""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from uuid import UUID

from coursetrack.core.config import SETTINGS
from coursetrack.core.errors import (
    AlreadyEnrolledError,
    ContentLockedError,
    EnrollmentInactiveError,
    InvalidSignalError,
    NotFoundError,
)
from coursetrack.core.metrics import (
    ATTEMPT_RESETS,
    ATTENDANCE_RECORDS,
    CONTENT_COMPLETIONS,
    PROGRESS_SIGNALS,
)
from coursetrack.models.attendance import AttendanceOutcome, AttendanceRecord, SessionWindow
from coursetrack.models.catalog import ContentItem, CourseOutline, Topic
from coursetrack.models.enrollment import ENROLLMENT_STATUSES, ContentProgress, Enrollment
from coursetrack.models.signals import AttendanceSignal, Signal, signal_key
from coursetrack.repos.catalog_repo import CatalogRepo
from coursetrack.repos.enrollment_repo import EnrollmentRepo
from coursetrack.services import aggregator
from coursetrack.services.attendance import compute_attendance
from coursetrack.services.cache import cache_service
from coursetrack.services.completion import evaluate
from coursetrack.services.task_queue import Outbox
from coursetrack.services.unlock import (
    UnlockStatus,
    content_unlock_status,
    course_unlock_status,
    next_content,
)

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class SignalOutcome:
    entry: ContentProgress
    applied: bool
    newly_completed: bool
    course: aggregator.CourseProgress


@dataclass(frozen=True, slots=True)
class ProgressSummary:
    enrollment: Enrollment
    outline: CourseOutline
    course: aggregator.CourseProgress


@dataclass(frozen=True, slots=True)
class SessionReportResult:
    outcomes: tuple[AttendanceOutcome, ...]
    not_enrolled: tuple[str, ...]
    absent: tuple[str, ...]


# ---------------------------------------------------------------------------
# lookups
# ---------------------------------------------------------------------------


async def _outline(catalog: CatalogRepo, course_id: UUID) -> CourseOutline:
    outline = await catalog.get_outline(course_id)
    if outline is None:
        raise NotFoundError("course", course_id)
    return outline


def _locate(outline: CourseOutline, content_id: UUID) -> tuple[Topic, ContentItem]:
    located = outline.locate(content_id)
    if located is None:
        raise NotFoundError("content", content_id)
    return located


async def _enrollment(
    enrollments: EnrollmentRepo, student_id: str, course_id: UUID
) -> Enrollment:
    enrollment = await enrollments.get(student_id, course_id)
    if enrollment is None:
        raise NotFoundError("enrollment", f"{student_id}/{course_id}")
    return enrollment


# ---------------------------------------------------------------------------
# writes
# ---------------------------------------------------------------------------


async def upsert_progress(
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    topic_id: UUID,
    item: ContentItem,
    signal: Signal | None,
) -> tuple[ContentProgress | None, ContentProgress]:
    """Locate or lazily create the entry and apply one signal to it.

    Returns (before, after).  Replaying a signal that was already applied
    returns the stored entry unchanged.
    """

    def apply(current: ContentProgress | None) -> ContentProgress:
        return evaluate(item, current, signal, topic_id=topic_id)

    return await enrollments.update_entry(student_id, course_id, item.id, apply)


async def record_signal(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    content_id: UUID,
    signal: Signal,
    *,
    outbox: Outbox | None = None,
) -> SignalOutcome:
    async with _staged(outbox) as staged:
        return await _apply_signal(
            catalog, enrollments, student_id, course_id, content_id, signal, staged
        )


async def _apply_signal(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    content_id: UUID,
    signal: Signal,
    outbox: Outbox,
) -> SignalOutcome:
    outline = await _outline(catalog, course_id)
    topic, item = _locate(outline, content_id)
    enrollment = await _enrollment(enrollments, student_id, course_id)

    if not enrollment.accepts_signals:
        PROGRESS_SIGNALS.labels(kind=signal.kind, outcome="rejected").inc()
        logger.warning(
            "Signal rejected: student=%s course=%s enrollment is %s",
            student_id,
            course_id,
            enrollment.status,
        )
        raise EnrollmentInactiveError(enrollment.status)

    # Attendance comes from the provider after the fact; it is not gated.
    if not isinstance(signal, AttendanceSignal):
        status = content_unlock_status(outline, content_id, enrollment)
        if not status.unlocked:
            PROGRESS_SIGNALS.labels(kind=signal.kind, outcome="rejected").inc()
            logger.warning(
                "Signal rejected: student=%s content=%s locked (%s)",
                student_id,
                content_id,
                status.reason,
            )
            raise ContentLockedError(content_id, status.reason)

    try:
        before, after = await upsert_progress(
            enrollments, student_id, course_id, topic.id, item, signal
        )
    except InvalidSignalError as e:
        PROGRESS_SIGNALS.labels(kind=signal.kind, outcome="rejected").inc()
        logger.warning(
            "Signal rejected: student=%s content=%s kind=%s: %s",
            student_id,
            content_id,
            signal.kind,
            e,
        )
        raise

    if before is not None and before.has_applied(signal_key(signal)):
        PROGRESS_SIGNALS.labels(kind=signal.kind, outcome="duplicate").inc()
        logger.info(
            "Duplicate signal ignored: student=%s content=%s kind=%s",
            student_id,
            content_id,
            signal.kind,
        )
        current = await _enrollment(enrollments, student_id, course_id)
        return SignalOutcome(
            entry=after,
            applied=False,
            newly_completed=False,
            course=aggregator.course_progress(outline, current),
        )

    PROGRESS_SIGNALS.labels(kind=signal.kind, outcome="applied").inc()
    newly_completed = after.is_completed and (before is None or not before.is_completed)
    if newly_completed:
        CONTENT_COMPLETIONS.labels(content_type=item.type).inc()
        logger.info(
            "Content completed: student=%s course=%s content=%s type=%s",
            student_id,
            course_id,
            content_id,
            item.type,
        )
        if item.type != "live_session":
            outbox.add(
                "content_completed",
                student_id=student_id,
                course_id=str(course_id),
                content_id=str(content_id),
                content_type=item.type,
                title=item.title,
                best_score=after.best_score,
                completed_at=after.completed_at,
            )

    course = await _refresh_course_progress(enrollments, outline, student_id, outbox)
    await invalidate_analytics(course_id)
    return SignalOutcome(
        entry=after, applied=True, newly_completed=newly_completed, course=course
    )


async def reset_attempts(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    content_id: UUID,
    *,
    admin_id: str,
) -> ContentProgress:
    """Irreversibly wipe a student's attempts and completion for one item."""
    outline = await _outline(catalog, course_id)
    _locate(outline, content_id)
    await _enrollment(enrollments, student_id, course_id)

    def wipe(current: ContentProgress | None) -> ContentProgress:
        if current is None:
            raise NotFoundError("progress", f"{student_id}/{content_id}")
        return current.reset()

    before, after = await enrollments.update_entry(student_id, course_id, content_id, wipe)

    ATTEMPT_RESETS.inc()
    logger.warning(
        "Attempts reset by admin=%s: student=%s course=%s content=%s "
        "(cleared %d attempts, status was %s)",
        admin_id,
        student_id,
        course_id,
        content_id,
        len(before.attempts) if before else 0,
        before.completion_status if before else "none",
    )

    current = await _enrollment(enrollments, student_id, course_id)
    course = aggregator.course_progress(outline, current)
    await enrollments.set_cached_progress(student_id, course_id, course.percentage)
    if current.status == "completed" and course.percentage < 100:
        await enrollments.set_status(student_id, course_id, "active")
        logger.info("Enrollment reopened after reset: student=%s course=%s", student_id, course_id)
    await invalidate_analytics(course_id)
    return after


async def _refresh_course_progress(
    enrollments: EnrollmentRepo, outline: CourseOutline, student_id: str, outbox: Outbox
) -> aggregator.CourseProgress:
    course_id = outline.course.id
    enrollment = await _enrollment(enrollments, student_id, course_id)
    course = aggregator.course_progress(outline, enrollment)
    await enrollments.set_cached_progress(student_id, course_id, course.percentage)

    if course.total_count > 0 and course.percentage >= 100 and enrollment.status == "active":
        await enrollments.set_status(student_id, course_id, "completed")
        logger.info("Course completed: student=%s course=%s", student_id, course_id)
        outbox.add(
            "course_completed",
            student_id=student_id,
            course_id=str(course_id),
            title=outline.course.title,
        )
    return course


@asynccontextmanager
async def _staged(outbox: Outbox | None) -> AsyncIterator[Outbox]:
    if outbox is not None:
        yield outbox
        return
    own = Outbox()
    yield own
    sent = await own.flush()
    if sent:
        logger.debug("Queued %d notification(s)", len(sent))


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------


async def progress_summary(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
) -> ProgressSummary:
    outline = await _outline(catalog, course_id)
    enrollment = await _enrollment(enrollments, student_id, course_id)
    return ProgressSummary(
        enrollment=enrollment,
        outline=outline,
        course=aggregator.course_progress(outline, enrollment),
    )


async def content_unlock(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    content_id: UUID,
) -> tuple[UnlockStatus, ContentItem | None]:
    outline = await _outline(catalog, course_id)
    _locate(outline, content_id)
    enrollment = await _enrollment(enrollments, student_id, course_id)
    return (
        content_unlock_status(outline, content_id, enrollment),
        next_content(outline, content_id, enrollment),
    )


async def course_unlock(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
) -> UnlockStatus:
    course = await catalog.get_course(course_id)
    if course is None:
        raise NotFoundError("course", course_id)
    if course.bundle_id is None:
        return UnlockStatus(unlocked=True, reason="Not part of a bundle")

    bundle = await catalog.list_bundle_courses(course.bundle_id)
    bundle_ids = {c.id for c in bundle}
    mine = {
        e.course_id: e
        for e in await enrollments.list_for_student(student_id)
        if e.course_id in bundle_ids
    }
    percentages: dict[UUID, float] = {}
    for cid, enrollment in mine.items():
        outline = await catalog.get_outline(cid)
        if outline is not None:
            percentages[cid] = aggregator.course_progress(outline, enrollment).percentage
    return course_unlock_status(course, bundle, mine, percentages)


# ---------------------------------------------------------------------------
# enrollment lifecycle (commerce hooks)
# ---------------------------------------------------------------------------


async def enroll(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    *,
    starting_order: int | None = None,
) -> Enrollment:
    if await catalog.get_course(course_id) is None:
        raise NotFoundError("course", course_id)
    if await enrollments.get(student_id, course_id) is not None:
        raise AlreadyEnrolledError(f"{student_id} is already enrolled in {course_id}")

    enrollment = Enrollment(
        student_id=student_id,
        course_id=course_id,
        enrolled_at=_now(),
        starting_order=starting_order,
    )
    await enrollments.add(enrollment)
    await invalidate_analytics(course_id)
    logger.info(
        "Enrolled: student=%s course=%s starting_order=%s",
        student_id,
        course_id,
        starting_order,
    )
    return enrollment


async def unenroll(enrollments: EnrollmentRepo, student_id: str, course_id: UUID) -> None:
    if not await enrollments.remove(student_id, course_id):
        raise NotFoundError("enrollment", f"{student_id}/{course_id}")
    await invalidate_analytics(course_id)
    logger.info("Unenrolled: student=%s course=%s", student_id, course_id)


async def set_enrollment_status(
    enrollments: EnrollmentRepo, student_id: str, course_id: UUID, status: str
) -> Enrollment:
    if status not in ENROLLMENT_STATUSES:
        raise ValueError(f"status must be one of {'|'.join(ENROLLMENT_STATUSES)} (got {status!r})")
    updated = await enrollments.set_status(student_id, course_id, status)
    if updated is None:
        raise NotFoundError("enrollment", f"{student_id}/{course_id}")
    await invalidate_analytics(course_id)
    logger.info("Enrollment status: student=%s course=%s -> %s", student_id, course_id, status)
    return updated


# ---------------------------------------------------------------------------
# live sessions
# ---------------------------------------------------------------------------


def _merge_records(records: list[AttendanceRecord]) -> dict[str, AttendanceRecord]:
    merged: dict[str, AttendanceRecord] = {}
    for record in records:
        existing = merged.get(record.student_id)
        if existing is None:
            merged[record.student_id] = record
        else:
            merged[record.student_id] = AttendanceRecord(
                student_id=record.student_id,
                join_events=existing.join_events + record.join_events,
            )
    return merged


async def process_session_report(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    course_id: UUID,
    content_id: UUID,
    window: SessionWindow,
    records: list[AttendanceRecord],
    *,
    outbox: Outbox | None = None,
) -> SessionReportResult:
    """Turn a provider attendance report into progress and notifications.

    Notifications are staged until every record has been written, so a
    failure part-way through sends none of them.
    """
    async with _staged(outbox) as staged:
        return await _apply_session_report(
            catalog, enrollments, course_id, content_id, window, records, staged
        )


async def _apply_session_report(
    catalog: CatalogRepo,
    enrollments: EnrollmentRepo,
    course_id: UUID,
    content_id: UUID,
    window: SessionWindow,
    records: list[AttendanceRecord],
    outbox: Outbox,
) -> SessionReportResult:
    outline = await _outline(catalog, course_id)
    topic, item = _locate(outline, content_id)
    if item.completion_criteria != "attendance":
        raise InvalidSignalError(f"{item.type} content does not take attendance reports")
    session_id = getattr(item.settings, "session_id", "") or None

    enrolled = {
        e.student_id: e for e in await enrollments.list_for_course(course_id) if e.accepts_signals
    }
    outcomes: list[AttendanceOutcome] = []
    not_enrolled: list[str] = []

    for student_id, record in _merge_records(records).items():
        if student_id not in enrolled:
            ATTENDANCE_RECORDS.labels(result="not_enrolled").inc()
            logger.warning(
                "Attendance skipped: student=%s has no active enrollment in course=%s",
                student_id,
                course_id,
            )
            not_enrolled.append(student_id)
            continue

        outcome = compute_attendance(record, window)
        signal = AttendanceSignal(
            occurred_at=window.ended_at,
            attendance_percentage=outcome.exact_attendance_percentage,
            time_spent=outcome.total_time_spent,
            session_id=session_id,
        )
        before, after = await upsert_progress(
            enrollments, student_id, course_id, topic.id, item, signal
        )
        outcomes.append(outcome)

        if before is not None and before.has_applied(signal_key(signal)):
            PROGRESS_SIGNALS.labels(kind="attendance", outcome="duplicate").inc()
            continue

        PROGRESS_SIGNALS.labels(kind="attendance", outcome="applied").inc()
        ATTENDANCE_RECORDS.labels(
            result="completed" if after.is_completed else "incomplete"
        ).inc()
        if after.is_completed and (before is None or not before.is_completed):
            CONTENT_COMPLETIONS.labels(content_type=item.type).inc()
        outbox.add(
            "live_session_outcome",
            student_id=student_id,
            course_id=str(course_id),
            content_id=str(content_id),
            session_id=session_id,
            attendance_percentage=outcome.attendance_percentage,
            camera_on_percentage=outcome.camera_on_percentage,
            camera_opened=outcome.camera_opened,
            joined_late=outcome.joined_late,
            total_time_spent=outcome.total_time_spent,
            completed=after.is_completed,
        )
        await _refresh_course_progress(enrollments, outline, student_id, outbox)

    attended = {o.student_id for o in outcomes}
    absent = sorted(sid for sid in enrolled if sid not in attended)
    for student_id in absent:
        outbox.add(
            "live_session_absence",
            student_id=student_id,
            course_id=str(course_id),
            content_id=str(content_id),
            session_id=session_id,
        )

    await invalidate_analytics(course_id)
    logger.info(
        "Session report processed: course=%s content=%s attended=%d absent=%d not_enrolled=%d",
        course_id,
        content_id,
        len(outcomes),
        len(absent),
        len(not_enrolled),
    )
    return SessionReportResult(
        outcomes=tuple(outcomes),
        not_enrolled=tuple(not_enrolled),
        absent=tuple(absent),
    )


# ---------------------------------------------------------------------------
# analytics (read-through cached)
# ---------------------------------------------------------------------------


async def invalidate_analytics(course_id: UUID) -> None:
    await cache_service.delete_pattern(f"analytics:{course_id}:*")


async def _cached(key: str, compute) -> dict:
    cached = await cache_service.get(key)
    if cached is not None:
        return json.loads(cached)
    payload = json.loads(json.dumps(asdict(await compute()), default=str))
    await cache_service.set(key, json.dumps(payload), SETTINGS.analytics_cache_ttl)
    return payload


async def course_analytics(
    catalog: CatalogRepo, enrollments: EnrollmentRepo, course_id: UUID
) -> dict:
    outline = await _outline(catalog, course_id)

    async def compute() -> aggregator.CourseAnalytics:
        return aggregator.course_analytics(outline, await enrollments.list_for_course(course_id))

    return await _cached(f"analytics:{course_id}:course", compute)


async def topic_analytics(
    catalog: CatalogRepo, enrollments: EnrollmentRepo, topic_id: UUID
) -> dict:
    topic = await catalog.get_topic(topic_id)
    if topic is None:
        raise NotFoundError("topic", topic_id)

    async def compute() -> aggregator.TopicAnalytics:
        return aggregator.topic_analytics(
            topic, await enrollments.list_for_course(topic.course_id)
        )

    return await _cached(f"analytics:{topic.course_id}:topic:{topic_id}", compute)


async def content_analytics(
    catalog: CatalogRepo, enrollments: EnrollmentRepo, content_id: UUID
) -> dict:
    located = await catalog.locate_content(content_id)
    if located is None:
        raise NotFoundError("content", content_id)
    course, _, item = located

    async def compute() -> aggregator.ContentAnalytics:
        return aggregator.content_analytics(item, await enrollments.list_for_course(course.id))

    return await _cached(f"analytics:{course.id}:content:{content_id}", compute)
