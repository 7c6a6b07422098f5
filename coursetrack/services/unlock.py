"""Unlock rules for content items and for courses inside a bundle.

Content checks run in a fixed order and stop at the first failing rule,
so the reason reported to the student names the most specific blocker:

  1. topic gate        (topic.unlock_condition vs. the previous topic)
  2. item gate         (item.unlock_condition vs. earlier items in the topic)
  3. sequential course (every earlier required item completed)
  4. prerequisites     (every explicit prerequisite completed)

None of the checks recurse through prerequisites, so a cyclic graph left
over from legacy data cannot hang a read; it just stays locked.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from uuid import UUID

from coursetrack.models.catalog import ContentItem, Course, CourseOutline, Topic
from coursetrack.models.enrollment import Enrollment


@dataclass(frozen=True, slots=True)
class UnlockStatus:
    unlocked: bool
    reason: str
    missing: tuple[UUID, ...] = ()


def _previous_topic(outline: CourseOutline, topic: Topic) -> Topic | None:
    earlier = [t for t in outline.topics if t.order < topic.order]
    if not earlier:
        return None
    return max(earlier, key=lambda t: t.order)


def _topic_gate(outline: CourseOutline, topic: Topic, done: set[UUID]) -> UnlockStatus | None:
    if topic.unlock_condition == "immediate":
        return None
    previous = _previous_topic(outline, topic)
    if previous is None:
        return None

    if topic.unlock_condition == "previous_completed":
        required = [i.id for i in previous.ordered_contents() if i.is_required]
        reason = f'Complete topic "{previous.title}" first'
    else:  # quiz_passed
        required = [i.id for i in previous.ordered_contents() if i.type == "quiz"]
        reason = f'Pass the quizzes in "{previous.title}" first'

    missing = tuple(i for i in required if i not in done)
    if missing:
        return UnlockStatus(unlocked=False, reason=reason, missing=missing)
    return None


def _item_gate(topic: Topic, item: ContentItem, done: set[UUID]) -> UnlockStatus | None:
    if item.unlock_condition == "immediate":
        return None
    earlier = [i for i in topic.ordered_contents() if i.order < item.order]
    if not earlier:
        return None

    if item.unlock_condition == "previous_completed":
        blocker = earlier[-1]
        if blocker.id not in done:
            return UnlockStatus(
                unlocked=False,
                reason=f'Complete "{blocker.title}" first',
                missing=(blocker.id,),
            )
        return None

    quizzes = [i for i in earlier if i.type == "quiz"]
    if quizzes and quizzes[-1].id not in done:
        return UnlockStatus(
            unlocked=False,
            reason=f'Pass "{quizzes[-1].title}" first',
            missing=(quizzes[-1].id,),
        )
    return None


def content_unlock_status(
    outline: CourseOutline,
    content_id: UUID,
    enrollment: Enrollment | None,
) -> UnlockStatus:
    located = outline.locate(content_id)
    if located is None:
        return UnlockStatus(unlocked=False, reason="Content not found")
    topic, item = located
    done = enrollment.completed_ids() if enrollment is not None else set()

    blocked = _topic_gate(outline, topic, done) or _item_gate(topic, item, done)
    if blocked is not None:
        return blocked

    if outline.course.requires_sequential:
        for _, earlier in outline.ordered_items():
            if earlier.id == item.id:
                break
            if earlier.is_required and earlier.id not in done:
                return UnlockStatus(
                    unlocked=False,
                    reason=f'Complete "{earlier.title}" first',
                    missing=(earlier.id,),
                )

    if item.prerequisites:
        missing = tuple(sorted(p for p in item.prerequisites if p not in done))
        if missing:
            return UnlockStatus(
                unlocked=False, reason="Prerequisites not met", missing=missing
            )
        return UnlockStatus(unlocked=True, reason="All prerequisites completed")

    return UnlockStatus(unlocked=True, reason="No prerequisites")


def next_content(
    outline: CourseOutline, content_id: UUID, enrollment: Enrollment | None
) -> ContentItem | None:
    """The item after content_id in course order, if the student may open it."""
    ordered = [item for _, item in outline.ordered_items()]
    for idx, item in enumerate(ordered):
        if item.id == content_id:
            if idx + 1 >= len(ordered):
                return None
            candidate = ordered[idx + 1]
            if content_unlock_status(outline, candidate.id, enrollment).unlocked:
                return candidate
            return None
    return None


# ---------------------------------------------------------------------------
# Course unlock inside a bundle
# ---------------------------------------------------------------------------


def course_unlock_status(
    course: Course,
    bundle_courses: list[Course],
    enrollments: Mapping[UUID, Enrollment],
    course_percentages: Mapping[UUID, float],
) -> UnlockStatus:
    """Sequential unlocking of weekly courses within a bundle.

    ``enrollments`` and ``course_percentages`` are keyed by course id and
    cover the student's enrollments in the bundle; percentages come from
    the aggregator, never from the cached enrollment field.
    """
    if not course.requires_sequential:
        return UnlockStatus(unlocked=True, reason="No sequential requirement")

    ordered = sorted(bundle_courses, key=lambda c: c.order)
    index = next((i for i, c in enumerate(ordered) if c.id == course.id), None)
    if index is None:
        return UnlockStatus(unlocked=False, reason="Course not in bundle")
    def is_completed(c: Course) -> bool:
        enrollment = enrollments.get(c.id)
        if enrollment is not None and enrollment.status == "completed":
            return True
        return course_percentages.get(c.id, 0.0) >= 100

    starting_orders = [
        e.starting_order
        for c in ordered
        if (e := enrollments.get(c.id)) is not None and e.starting_order is not None
    ]
    start = min(starting_orders) if starting_orders else None

    first_checked = 0
    if start is not None:
        if course.order < start:
            pct = course_percentages.get(course.id, 0.0)
            if pct > 0:
                return UnlockStatus(
                    unlocked=True,
                    reason=f"Course already started with {pct:g}% progress",
                )
            return UnlockStatus(
                unlocked=False,
                reason=f"Enrolled from week {start + 1}; this course is from an earlier week",
            )
        first_checked = next(
            (i for i, c in enumerate(ordered) if c.order >= start), index
        )
    elif index == 0:
        return UnlockStatus(unlocked=True, reason="First course in bundle")

    for previous in ordered[first_checked:index]:
        if not is_completed(previous):
            return UnlockStatus(
                unlocked=False,
                reason=f'Complete "{previous.title}" first',
                missing=(previous.id,),
            )
    return UnlockStatus(unlocked=True, reason="All previous courses completed")
