from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from coursetrack.core.errors import AlreadyEnrolledError, NotFoundError
from coursetrack.models.enrollment import ContentProgress, Enrollment
from coursetrack.repos.enrollment_repo import InMemoryEnrollmentRepo


def _fresh(content_id, at: int | None = None) -> ContentProgress:
    return ContentProgress(
        content_id=content_id, topic_id=uuid4(), content_type="reading", last_accessed_at=at
    )


def test_add_twice_raises() -> None:
    repo = InMemoryEnrollmentRepo()
    enrollment = Enrollment(student_id="s", course_id=uuid4())

    async def scenario():
        await repo.add(enrollment)
        await repo.add(enrollment)

    with pytest.raises(AlreadyEnrolledError):
        asyncio.run(scenario())


def test_update_entry_creates_then_replaces() -> None:
    repo = InMemoryEnrollmentRepo()
    course_id, content_id = uuid4(), uuid4()

    async def scenario():
        await repo.add(Enrollment(student_id="s", course_id=course_id))
        first = await repo.update_entry("s", course_id, content_id, lambda cur: _fresh(content_id, 10))
        second = await repo.update_entry("s", course_id, content_id, lambda cur: _fresh(content_id, 5))
        return first, second, await repo.get("s", course_id)

    (before1, _), (before2, after2), stored = asyncio.run(scenario())
    assert before1 is None
    assert before2 is not None
    assert stored.entries == (after2,)
    # last_accessed never moves backwards
    assert stored.last_accessed == 10


def test_update_entry_without_enrollment() -> None:
    repo = InMemoryEnrollmentRepo()
    with pytest.raises(NotFoundError):
        asyncio.run(repo.update_entry("s", uuid4(), uuid4(), lambda cur: _fresh(uuid4())))


def test_failed_update_writes_nothing() -> None:
    repo = InMemoryEnrollmentRepo()
    course_id = uuid4()

    def boom(cur):
        raise ValueError("rejected")

    async def scenario():
        await repo.add(Enrollment(student_id="s", course_id=course_id))
        with pytest.raises(ValueError):
            await repo.update_entry("s", course_id, uuid4(), boom)
        return await repo.get("s", course_id)

    assert asyncio.run(scenario()).entries == ()


def test_list_and_status() -> None:
    repo = InMemoryEnrollmentRepo()
    c1, c2 = uuid4(), uuid4()

    async def scenario():
        await repo.add(Enrollment(student_id="a", course_id=c1))
        await repo.add(Enrollment(student_id="b", course_id=c1))
        await repo.add(Enrollment(student_id="a", course_id=c2))
        paused = await repo.set_status("a", c1, "paused")
        missing = await repo.set_status("z", c1, "paused")
        removed = await repo.remove("b", c1)
        return paused, missing, removed, await repo.list_for_course(c1), await repo.list_for_student("a")

    paused, missing, removed, by_course, by_student = asyncio.run(scenario())
    assert paused.status == "paused"
    assert missing is None
    assert removed is True
    assert [e.student_id for e in by_course] == ["a"]
    assert {e.course_id for e in by_student} == {c1, c2}


def test_remove_drops_entry_locks() -> None:
    repo = InMemoryEnrollmentRepo()
    course_id, other_course = uuid4(), uuid4()

    async def scenario():
        await repo.add(Enrollment(student_id="s", course_id=course_id))
        await repo.add(Enrollment(student_id="s", course_id=other_course))
        for _ in range(3):
            content_id = uuid4()
            await repo.update_entry("s", course_id, content_id, lambda cur, c=content_id: _fresh(c))
        kept = uuid4()
        await repo.update_entry("s", other_course, kept, lambda cur: _fresh(kept))
        removed = await repo.remove("s", course_id)
        return removed, kept

    removed, kept = asyncio.run(scenario())

    assert removed is True
    assert list(repo._locks) == [("s", other_course, kept)]
