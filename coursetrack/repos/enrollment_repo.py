from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from coursetrack.core.errors import AlreadyEnrolledError, NotFoundError
from coursetrack.models.enrollment import ContentProgress, Enrollment

EntryUpdate = Callable[[ContentProgress | None], ContentProgress]


class EnrollmentRepo(Protocol):
    async def get(self, student_id: str, course_id: UUID) -> Enrollment | None: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def remove(self, student_id: str, course_id: UUID) -> bool: ...
    async def set_status(
        self, student_id: str, course_id: UUID, status: str
    ) -> Enrollment | None: ...
    async def set_cached_progress(
        self, student_id: str, course_id: UUID, progress: float
    ) -> None: ...
    async def list_for_course(self, course_id: UUID) -> list[Enrollment]: ...
    async def list_for_student(self, student_id: str) -> list[Enrollment]: ...
    async def update_entry(
        self,
        student_id: str,
        course_id: UUID,
        content_id: UUID,
        fn: EntryUpdate,
    ) -> tuple[ContentProgress | None, ContentProgress]: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, UUID], Enrollment] = {}
        self._locks: dict[tuple[str, UUID, UUID], asyncio.Lock] = {}

    def clear(self) -> None:
        self._store.clear()
        self._locks.clear()

    async def get(self, student_id: str, course_id: UUID) -> Enrollment | None:
        return self._store.get((student_id, course_id))

    async def add(self, enrollment: Enrollment) -> None:
        key = (enrollment.student_id, enrollment.course_id)
        if key in self._store:
            raise AlreadyEnrolledError(
                f"{enrollment.student_id} is already enrolled in {enrollment.course_id}"
            )
        self._store[key] = enrollment

    async def remove(self, student_id: str, course_id: UUID) -> bool:
        for key in [k for k in self._locks if k[:2] == (student_id, course_id)]:
            del self._locks[key]
        return self._store.pop((student_id, course_id), None) is not None

    async def set_status(
        self, student_id: str, course_id: UUID, status: str
    ) -> Enrollment | None:
        e = self._store.get((student_id, course_id))
        if e is None:
            return None
        updated = replace(e, status=status)
        self._store[(student_id, course_id)] = updated
        return updated

    async def set_cached_progress(
        self, student_id: str, course_id: UUID, progress: float
    ) -> None:
        e = self._store.get((student_id, course_id))
        if e is not None:
            self._store[(student_id, course_id)] = replace(e, progress=progress)

    async def list_for_course(self, course_id: UUID) -> list[Enrollment]:
        return [e for (_, cid), e in self._store.items() if cid == course_id]

    async def list_for_student(self, student_id: str) -> list[Enrollment]:
        return [e for (sid, _), e in self._store.items() if sid == student_id]

    async def update_entry(
        self,
        student_id: str,
        course_id: UUID,
        content_id: UUID,
        fn: EntryUpdate,
    ) -> tuple[ContentProgress | None, ContentProgress]:
        """Apply fn to one entry under that entry's lock.

        If fn raises, nothing is written.
        """
        lock = self._locks.setdefault((student_id, course_id, content_id), asyncio.Lock())
        async with lock:
            enrollment = self._store.get((student_id, course_id))
            if enrollment is None:
                raise NotFoundError("enrollment", f"{student_id}/{course_id}")

            before = enrollment.entry_for(content_id)
            after = fn(before)

            last = enrollment.last_accessed
            touched = after.last_accessed_at
            if touched is not None and (last is None or touched > last):
                last = touched
            self._store[(student_id, course_id)] = replace(
                enrollment.with_entry(after), last_accessed=last
            )
            return before, after
