"""Roll-ups from Content-Progress entries.

Everything here is recomputed from entries on every call.  The cached
``Enrollment.progress`` field is never read; callers may write the result
back to it as a hint for list views.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from coursetrack.models.catalog import ContentItem, CourseOutline, Topic
from coursetrack.models.enrollment import ContentProgress, Enrollment


@dataclass(frozen=True, slots=True)
class TopicProgress:
    topic_id: UUID
    completed_count: int
    total_count: int
    percentage: float


@dataclass(frozen=True, slots=True)
class CourseProgress:
    completed_count: int
    total_count: int
    percentage: float
    topics: tuple[TopicProgress, ...]


def _percentage(completed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(completed / total * 100, 2)


def topic_progress(topic: Topic, enrollment: Enrollment | None) -> TopicProgress:
    done = enrollment.completed_ids() if enrollment is not None else set()
    total = len(topic.contents)
    completed = sum(1 for item in topic.contents if item.id in done)
    return TopicProgress(
        topic_id=topic.id,
        completed_count=completed,
        total_count=total,
        percentage=_percentage(completed, total),
    )


def course_progress(outline: CourseOutline, enrollment: Enrollment | None) -> CourseProgress:
    topics = tuple(
        topic_progress(t, enrollment) for t in sorted(outline.topics, key=lambda t: t.order)
    )
    completed = sum(t.completed_count for t in topics)
    total = sum(t.total_count for t in topics)
    return CourseProgress(
        completed_count=completed,
        total_count=total,
        percentage=_percentage(completed, total),
        topics=topics,
    )


# ---------------------------------------------------------------------------
# Cross-student analytics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentAnalytics:
    content_id: UUID
    content_type: str
    viewers: int
    completions: int
    completion_rate: float
    average_score: float | None
    pass_rate: float | None
    best_performer: str | None
    best_score: float | None


@dataclass(frozen=True, slots=True)
class TopicAnalytics:
    topic_id: UUID
    enrolled_students: int
    students_completed: int
    average_progress: float
    contents: tuple[ContentAnalytics, ...]


@dataclass(frozen=True, slots=True)
class CourseAnalytics:
    course_id: UUID
    enrolled_students: int
    students_completed: int
    average_progress: float
    completion_rate: float
    topics: tuple[TopicAnalytics, ...]


def _entries_for(
    content_id: UUID, enrollments: list[Enrollment]
) -> list[tuple[str, ContentProgress]]:
    found = []
    for enrollment in enrollments:
        entry = enrollment.entry_for(content_id)
        if entry is not None:
            found.append((enrollment.student_id, entry))
    return found


def content_analytics(item: ContentItem, enrollments: list[Enrollment]) -> ContentAnalytics:
    entries = _entries_for(item.id, enrollments)
    viewers = len(entries)
    completions = sum(1 for _, e in entries if e.is_completed)

    attempted = [(sid, e) for sid, e in entries if e.attempts]
    if attempted:
        average = round(
            sum(e.best_score or 0.0 for _, e in attempted) / len(attempted), 2
        )
        passed_latest = sum(
            1 for _, e in attempted if e.latest_attempt is not None and e.latest_attempt.passed
        )
        pass_rate: float | None = round(passed_latest / len(attempted) * 100, 2)
        # highest best score; ties go to whoever completed first, then by id
        sid, top = min(
            attempted,
            key=lambda pair: (
                -(pair[1].best_score or 0.0),
                pair[1].completed_at if pair[1].completed_at is not None else float("inf"),
                pair[0],
            ),
        )
        best_performer: str | None = sid
        best_score: float | None = top.best_score
    else:
        average = None
        pass_rate = None
        best_performer = None
        best_score = None

    return ContentAnalytics(
        content_id=item.id,
        content_type=item.type,
        viewers=viewers,
        completions=completions,
        completion_rate=_percentage(completions, viewers),
        average_score=average,
        pass_rate=pass_rate,
        best_performer=best_performer,
        best_score=best_score,
    )


def topic_analytics(topic: Topic, enrollments: list[Enrollment]) -> TopicAnalytics:
    per_student = [topic_progress(topic, e) for e in enrollments]
    enrolled = len(per_student)
    finished = sum(
        1 for p in per_student if p.total_count > 0 and p.completed_count == p.total_count
    )
    average = round(sum(p.percentage for p in per_student) / enrolled, 2) if enrolled else 0.0
    return TopicAnalytics(
        topic_id=topic.id,
        enrolled_students=enrolled,
        students_completed=finished,
        average_progress=average,
        contents=tuple(content_analytics(i, enrollments) for i in topic.ordered_contents()),
    )


def course_analytics(outline: CourseOutline, enrollments: list[Enrollment]) -> CourseAnalytics:
    per_student = [course_progress(outline, e) for e in enrollments]
    enrolled = len(per_student)
    finished = sum(
        1 for p in per_student if p.total_count > 0 and p.completed_count == p.total_count
    )
    average = round(sum(p.percentage for p in per_student) / enrolled, 2) if enrolled else 0.0
    return CourseAnalytics(
        course_id=outline.course.id,
        enrolled_students=enrolled,
        students_completed=finished,
        average_progress=average,
        completion_rate=_percentage(finished, enrolled),
        topics=tuple(
            topic_analytics(t, enrollments) for t in sorted(outline.topics, key=lambda t: t.order)
        ),
    )
