from __future__ import annotations

from uuid import uuid4

from coursetrack.models.catalog import Course, CourseOutline, Topic
from coursetrack.models.enrollment import Attempt, ContentProgress, Enrollment
from coursetrack.services import aggregator
from tests.conftest import item


def _outline(*topics_items) -> CourseOutline:
    course = Course.new(title="C")
    topics = tuple(
        Topic.new(course_id=course.id, title=f"T{i}", order=i).with_contents(tuple(items))
        for i, items in enumerate(topics_items, start=1)
    )
    return CourseOutline(course=course, topics=topics)


def _entry(content_id, topic_id, status="completed", **kw) -> ContentProgress:
    return ContentProgress(
        content_id=content_id,
        topic_id=topic_id,
        content_type="quiz",
        completion_status=status,
        **kw,
    )


def _attempt(score: float, passed: bool, no: int = 1) -> Attempt:
    return Attempt(
        attempt_key=f"k{no}",
        attempt_no=no,
        score=score,
        correct_count=0,
        total_count=0,
        started_at=0,
        submitted_at=0,
        passed=passed,
    )


def test_course_progress_counts_completed_items() -> None:
    a, b, c = item("reading", 1), item("video", 2), item("quiz", 1)
    outline = _outline([a, b], [c])
    t1, t2 = outline.topics
    enrollment = Enrollment(
        student_id="s",
        course_id=outline.course.id,
        progress=99,  # stale cached value is ignored
        entries=(_entry(a.id, t1.id), _entry(b.id, t1.id, status="in_progress")),
    )

    progress = aggregator.course_progress(outline, enrollment)

    assert progress.completed_count == 1
    assert progress.total_count == 3
    assert progress.percentage == 33.33
    assert [t.percentage for t in progress.topics] == [50.0, 0.0]


def test_empty_course_is_zero_percent() -> None:
    outline = _outline()
    progress = aggregator.course_progress(outline, None)
    assert progress.percentage == 0.0
    assert progress.total_count == 0


def test_content_analytics_best_performer_and_pass_rate() -> None:
    quiz = item("quiz", 1)
    topic_id = uuid4()
    course_id = uuid4()
    enrollments = [
        Enrollment(
            student_id="amy",
            course_id=course_id,
            entries=(
                _entry(
                    quiz.id,
                    topic_id,
                    attempts=(_attempt(90, True),),
                    best_score=90,
                    completed_at=200,
                ),
            ),
        ),
        Enrollment(
            student_id="bob",
            course_id=course_id,
            entries=(
                _entry(
                    quiz.id,
                    topic_id,
                    attempts=(_attempt(90, True),),
                    best_score=90,
                    completed_at=100,
                ),
            ),
        ),
        Enrollment(
            student_id="cat",
            course_id=course_id,
            entries=(
                _entry(
                    quiz.id,
                    topic_id,
                    status="failed",
                    attempts=(_attempt(30, False),),
                    best_score=30,
                ),
            ),
        ),
        Enrollment(student_id="dan", course_id=course_id),
    ]

    stats = aggregator.content_analytics(quiz, enrollments)

    assert stats.viewers == 3
    assert stats.completions == 2
    assert stats.completion_rate == 66.67
    assert stats.average_score == 70.0
    assert stats.pass_rate == 66.67
    # tie on score goes to the earlier completion
    assert stats.best_performer == "bob"
    assert stats.best_score == 90


def test_content_analytics_without_attempts() -> None:
    reading = item("reading", 1)
    stats = aggregator.content_analytics(reading, [])
    assert stats.viewers == 0
    assert stats.completion_rate == 0.0
    assert stats.average_score is None
    assert stats.best_performer is None


def test_course_analytics_students_completed() -> None:
    a = item("reading", 1)
    outline = _outline([a])
    (topic,) = outline.topics
    done = Enrollment(
        student_id="s1", course_id=outline.course.id, entries=(_entry(a.id, topic.id),)
    )
    fresh = Enrollment(student_id="s2", course_id=outline.course.id)

    stats = aggregator.course_analytics(outline, [done, fresh])

    assert stats.enrolled_students == 2
    assert stats.students_completed == 1
    assert stats.average_progress == 50.0
    assert stats.completion_rate == 50.0
    assert stats.topics[0].students_completed == 1
