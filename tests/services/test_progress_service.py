from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from coursetrack.core.errors import (
    AlreadyEnrolledError,
    ContentLockedError,
    EnrollmentInactiveError,
    InvalidSignalError,
    NotFoundError,
)
from coursetrack.models.attendance import AttendanceRecord, JoinEvent, SessionWindow
from coursetrack.models.signals import AttemptSignal, ViewSignal
from coursetrack.repos.catalog_repo import InMemoryCatalogRepo
from coursetrack.repos.enrollment_repo import InMemoryEnrollmentRepo
from coursetrack.services import progress_service
from coursetrack.services.cache import cache_service
from coursetrack.services.task_queue import NOTIFICATIONS_QUEUE, Outbox, task_queue
from tests.conftest import add_enrollment, item, save_course

STUDENT = "student-1"


def _notifications() -> list[dict]:
    return [t.payload for t in task_queue._queues.get(NOTIFICATIONS_QUEUE, [])]  # type: ignore[union-attr]


def _view(**kw) -> ViewSignal:
    return ViewSignal(occurred_at=kw.pop("occurred_at", 1_700_000_100), **kw)


def _attempt(key: str, score: float) -> AttemptSignal:
    return AttemptSignal(attempt_key=key, occurred_at=1_700_000_200, score=score)


@pytest.fixture
def repos() -> tuple[InMemoryCatalogRepo, InMemoryEnrollmentRepo]:
    return InMemoryCatalogRepo(), InMemoryEnrollmentRepo()


# ---- record_signal ----


def test_completing_last_item_completes_enrollment(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1, title="Welcome")

    async def scenario():
        outline = await save_course(catalog, [[reading]], title="Onboarding")
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        outcome = await progress_service.record_signal(
            catalog, enrollments, STUDENT, outline.course.id, reading.id, _view(viewed=True)
        )
        return outline, outcome, await enrollments.get(STUDENT, outline.course.id)

    outline, outcome, enrollment = asyncio.run(scenario())

    assert outcome.applied and outcome.newly_completed
    assert outcome.course.percentage == 100
    assert enrollment.status == "completed"
    assert enrollment.progress == 100
    assert enrollment.last_accessed == 1_700_000_100
    kinds = [n["kind"] for n in _notifications()]
    assert kinds == ["content_completed", "course_completed"]
    assert _notifications()[0]["content_id"] == str(reading.id)


def test_duplicate_signal_is_not_reapplied(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)
    other = item("reading", 2)

    async def scenario():
        outline = await save_course(catalog, [[reading, other]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        first = await progress_service.record_signal(
            catalog, enrollments, STUDENT, outline.course.id, reading.id, _view(viewed=True)
        )
        second = await progress_service.record_signal(
            catalog,
            enrollments,
            STUDENT,
            outline.course.id,
            reading.id,
            _view(viewed=True, occurred_at=1_700_009_999),
        )
        return first, second

    first, second = asyncio.run(scenario())

    assert first.applied is True
    assert second.applied is False
    assert second.newly_completed is False
    assert second.entry == first.entry
    assert len(_notifications()) == 1


def test_signal_without_enrollment(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)

    async def scenario():
        outline = await save_course(catalog, [[reading]])
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, outline.course.id, reading.id, _view(viewed=True)
        )

    with pytest.raises(NotFoundError, match="enrollment"):
        asyncio.run(scenario())


def test_paused_enrollment_rejects_signals(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)

    async def scenario():
        outline = await save_course(catalog, [[reading]])
        await add_enrollment(enrollments, STUDENT, outline.course.id, status="paused")
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, outline.course.id, reading.id, _view(viewed=True)
        )

    with pytest.raises(EnrollmentInactiveError):
        asyncio.run(scenario())


def test_locked_content_rejects_signals(repos) -> None:
    catalog, enrollments = repos
    a = item("reading", 1)
    b = item("quiz", 2, prerequisites=frozenset({a.id}))

    async def scenario():
        outline = await save_course(catalog, [[a, b]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, outline.course.id, b.id, _attempt("k1", 90)
        )

    with pytest.raises(ContentLockedError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.reason == "Prerequisites not met"


def test_rejected_signal_leaves_state_untouched(repos) -> None:
    catalog, enrollments = repos
    quiz = item("quiz", 1)

    async def scenario():
        outline = await save_course(catalog, [[quiz]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        with pytest.raises(InvalidSignalError):
            await progress_service.record_signal(
                catalog, enrollments, STUDENT, outline.course.id, quiz.id, _attempt("k1", 150)
            )
        return await enrollments.get(STUDENT, outline.course.id)

    enrollment = asyncio.run(scenario())
    assert enrollment.entries == ()


def test_concurrent_attempts_are_serialized(repos) -> None:
    catalog, enrollments = repos
    quiz = item("quiz", 1, passing_score=60, max_attempts=3)

    async def scenario():
        outline = await save_course(catalog, [[quiz]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        await asyncio.gather(
            *(
                progress_service.record_signal(
                    catalog, enrollments, STUDENT, outline.course.id, quiz.id, _attempt(key, 20)
                )
                for key in ("k1", "k2", "k1")
            )
        )
        return await enrollments.get(STUDENT, outline.course.id)

    enrollment = asyncio.run(scenario())
    entry = enrollment.entry_for(quiz.id)
    assert [a.attempt_no for a in entry.attempts] == [1, 2]
    assert {a.attempt_key for a in entry.attempts} == {"k1", "k2"}
    assert len(enrollment.entries) == 1


# ---- reset ----


def test_reset_attempts_reopens_completed_enrollment(repos) -> None:
    catalog, enrollments = repos
    quiz = item("quiz", 1, passing_score=60, max_attempts=1)

    async def scenario():
        outline = await save_course(catalog, [[quiz]])
        course_id = outline.course.id
        await add_enrollment(enrollments, STUDENT, course_id)
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, course_id, quiz.id, _attempt("k1", 80)
        )
        completed = await enrollments.get(STUDENT, course_id)
        entry = await progress_service.reset_attempts(
            catalog, enrollments, STUDENT, course_id, quiz.id, admin_id="admin-1"
        )
        retry = await progress_service.record_signal(
            catalog, enrollments, STUDENT, course_id, quiz.id, _attempt("k2", 90)
        )
        return completed, entry, await enrollments.get(STUDENT, course_id), retry

    completed, entry, after, retry = asyncio.run(scenario())

    assert completed.status == "completed"
    assert entry.completion_status == "not_started"
    assert entry.attempts == ()
    assert entry.best_score is None
    assert retry.applied is True
    assert retry.entry.attempts[0].attempt_no == 1
    assert after.status == "completed"


def test_reset_without_entry(repos) -> None:
    catalog, enrollments = repos
    quiz = item("quiz", 1)

    async def scenario():
        outline = await save_course(catalog, [[quiz]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        await progress_service.reset_attempts(
            catalog, enrollments, STUDENT, outline.course.id, quiz.id, admin_id="admin-1"
        )

    with pytest.raises(NotFoundError, match="progress"):
        asyncio.run(scenario())


# ---- enrollment lifecycle ----


def test_enroll_twice(repos) -> None:
    catalog, enrollments = repos

    async def scenario():
        outline = await save_course(catalog, [[item("reading", 1)]])
        await progress_service.enroll(catalog, enrollments, STUDENT, outline.course.id)
        await progress_service.enroll(catalog, enrollments, STUDENT, outline.course.id)

    with pytest.raises(AlreadyEnrolledError):
        asyncio.run(scenario())


def test_enroll_unknown_course(repos) -> None:
    catalog, enrollments = repos
    with pytest.raises(NotFoundError, match="course"):
        asyncio.run(progress_service.enroll(catalog, enrollments, STUDENT, uuid4()))


def test_unenroll_then_status_change_fails(repos) -> None:
    catalog, enrollments = repos

    async def scenario():
        outline = await save_course(catalog, [[item("reading", 1)]])
        await progress_service.enroll(catalog, enrollments, STUDENT, outline.course.id)
        await progress_service.unenroll(enrollments, STUDENT, outline.course.id)
        await progress_service.set_enrollment_status(
            enrollments, STUDENT, outline.course.id, "paused"
        )

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())


def test_course_outside_bundle_is_unlocked(repos) -> None:
    catalog, enrollments = repos

    async def scenario():
        outline = await save_course(catalog, [[item("reading", 1)]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        return await progress_service.course_unlock(
            catalog, enrollments, STUDENT, outline.course.id
        )

    status = asyncio.run(scenario())
    assert status.unlocked
    assert status.reason == "Not part of a bundle"


def test_bundle_course_unlocks_after_previous_week(repos) -> None:
    catalog, enrollments = repos
    bundle = uuid4()
    w1_item = item("reading", 1)

    async def scenario():
        w1 = await save_course(
            catalog, [[w1_item]], title="Week 1", bundle_id=bundle, order=0, requires_sequential=True
        )
        w2 = await save_course(
            catalog,
            [[item("reading", 1)]],
            title="Week 2",
            bundle_id=bundle,
            order=1,
            requires_sequential=True,
        )
        for outline in (w1, w2):
            await add_enrollment(enrollments, STUDENT, outline.course.id)
        before = await progress_service.course_unlock(
            catalog, enrollments, STUDENT, w2.course.id
        )
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, w1.course.id, w1_item.id, _view(viewed=True)
        )
        after = await progress_service.course_unlock(catalog, enrollments, STUDENT, w2.course.id)
        return before, after

    before, after = asyncio.run(scenario())
    assert not before.unlocked
    assert after.unlocked


# ---- live sessions ----


def test_session_report(repos) -> None:
    catalog, enrollments = repos
    session = item("live_session", 1, session_id="zoom-42")
    start = 1_700_000_000
    window = SessionWindow(started_at=start, ended_at=start + 3600)
    records = [
        AttendanceRecord(
            student_id="present",
            join_events=(
                JoinEvent(join_time=start, leave_time=start + 2400, camera_on_at_join=True),
            ),
        ),
        AttendanceRecord(
            student_id="stranger",
            join_events=(JoinEvent(join_time=start, leave_time=start + 3600),),
        ),
    ]

    async def scenario():
        outline = await save_course(catalog, [[session]])
        await add_enrollment(enrollments, "present", outline.course.id)
        await add_enrollment(enrollments, "absent", outline.course.id)
        result = await progress_service.process_session_report(
            catalog, enrollments, outline.course.id, session.id, window, records
        )
        return result, await enrollments.get("present", outline.course.id)

    result, present = asyncio.run(scenario())

    assert [o.student_id for o in result.outcomes] == ["present"]
    assert result.outcomes[0].attendance_percentage == 66.67
    assert result.outcomes[0].camera_opened is True
    assert result.not_enrolled == ("stranger",)
    assert result.absent == ("absent",)
    assert present.entry_for(session.id).is_completed
    assert present.status == "completed"

    kinds = sorted(n["kind"] for n in _notifications())
    assert kinds == ["course_completed", "live_session_absence", "live_session_outcome"]


def test_session_report_on_non_live_item(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)

    async def scenario():
        outline = await save_course(catalog, [[reading]])
        await progress_service.process_session_report(
            catalog, enrollments, outline.course.id, reading.id, SessionWindow(0, 60), []
        )

    with pytest.raises(InvalidSignalError):
        asyncio.run(scenario())


# ---- analytics cache ----


def test_analytics_cached_until_progress_changes(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)

    async def scenario():
        outline = await save_course(catalog, [[reading]])
        course_id = outline.course.id
        await add_enrollment(enrollments, STUDENT, course_id)
        first = await progress_service.course_analytics(catalog, enrollments, course_id)
        key = f"analytics:{course_id}:course"
        cached = await cache_service.get(key)
        await progress_service.record_signal(
            catalog, enrollments, STUDENT, course_id, reading.id, _view(viewed=True)
        )
        evicted = await cache_service.get(key)
        second = await progress_service.course_analytics(catalog, enrollments, course_id)
        return first, cached, evicted, second

    first, cached, evicted, second = asyncio.run(scenario())
    assert first["students_completed"] == 0
    assert cached is not None
    assert evicted is None
    assert second["students_completed"] == 1
    assert second["course_id"] == first["course_id"]


class _FailingEnrollmentRepo(InMemoryEnrollmentRepo):
    """Raises when writing progress for one student."""

    def __init__(self, failing_student: str) -> None:
        super().__init__()
        self.failing_student = failing_student

    async def update_entry(self, student_id, course_id, content_id, fn):
        if student_id == self.failing_student:
            raise RuntimeError("connection lost")
        return await super().update_entry(student_id, course_id, content_id, fn)


def test_failed_session_report_queues_nothing() -> None:
    catalog, enrollments = InMemoryCatalogRepo(), _FailingEnrollmentRepo("b")
    session = item("live_session", 1)
    start = 1_700_000_000
    window = SessionWindow(started_at=start, ended_at=start + 3600)
    records = [
        AttendanceRecord(
            student_id=sid,
            join_events=(JoinEvent(join_time=start, leave_time=start + 3600),),
        )
        for sid in ("a", "b")
    ]

    async def scenario():
        outline = await save_course(catalog, [[session]])
        await add_enrollment(enrollments, "a", outline.course.id)
        await add_enrollment(enrollments, "b", outline.course.id)
        await progress_service.process_session_report(
            catalog, enrollments, outline.course.id, session.id, window, records
        )

    with pytest.raises(RuntimeError, match="connection lost"):
        asyncio.run(scenario())
    assert _notifications() == []


def test_caller_outbox_is_not_flushed(repos) -> None:
    catalog, enrollments = repos
    reading = item("reading", 1)
    outbox = Outbox()

    async def scenario():
        outline = await save_course(catalog, [[reading]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        await progress_service.record_signal(
            catalog,
            enrollments,
            STUDENT,
            outline.course.id,
            reading.id,
            _view(viewed=True),
            outbox=outbox,
        )
        staged = [p["kind"] for p in outbox.pending]
        queued_before_flush = list(_notifications())
        await outbox.flush()
        return staged, queued_before_flush

    staged, queued_before_flush = asyncio.run(scenario())

    assert staged == ["content_completed", "course_completed"]
    assert queued_before_flush == []
    assert [n["kind"] for n in _notifications()] == ["content_completed", "course_completed"]


def test_attendance_just_under_half_is_not_completed(repos) -> None:
    catalog, enrollments = repos
    session = item("live_session", 1)
    start = 1_700_000_000
    window = SessionWindow(started_at=start, ended_at=start + 60_000)
    record = AttendanceRecord(
        student_id=STUDENT,
        join_events=(JoinEvent(join_time=start, leave_time=start + 29_998),),
    )

    async def scenario():
        outline = await save_course(catalog, [[session]])
        await add_enrollment(enrollments, STUDENT, outline.course.id)
        result = await progress_service.process_session_report(
            catalog, enrollments, outline.course.id, session.id, window, [record]
        )
        return result, await enrollments.get(STUDENT, outline.course.id)

    result, enrollment = asyncio.run(scenario())

    assert result.outcomes[0].attendance_percentage == 50.0
    assert enrollment.entry_for(session.id).completion_status == "in_progress"
