"""PostgreSQL implementation of EnrollmentRepo.

Entry updates lock the content_progress row with SELECT ... FOR UPDATE.
A first touch has no row to lock yet, so it locks the parent enrollment
row instead; that serializes creation of entries for one enrollment but
leaves updates of existing entries independent.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from coursetrack.core.errors import AlreadyEnrolledError, NotFoundError
from coursetrack.db.tables import ContentAttemptRow, ContentProgressRow, EnrollmentRow
from coursetrack.models.enrollment import Attempt, ContentProgress, Enrollment
from coursetrack.repos.enrollment_repo import EntryUpdate


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: str, course_id: UUID) -> Enrollment | None:
        row = await self._session.get(EnrollmentRow, (student_id, course_id))
        if row is None:
            return None
        return (await self._hydrate([row]))[0]

    async def add(self, enrollment: Enrollment) -> None:
        stmt = (
            insert(EnrollmentRow)
            .values(
                student_id=enrollment.student_id,
                course_id=enrollment.course_id,
                status=enrollment.status,
                progress=enrollment.progress,
                enrolled_at=enrollment.enrolled_at,
                last_accessed=enrollment.last_accessed,
                starting_order=enrollment.starting_order,
            )
            .on_conflict_do_nothing()
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise AlreadyEnrolledError(
                f"{enrollment.student_id} is already enrolled in {enrollment.course_id}"
            )

    async def remove(self, student_id: str, course_id: UUID) -> bool:
        stmt = delete(EnrollmentRow).where(
            EnrollmentRow.student_id == student_id,
            EnrollmentRow.course_id == course_id,
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def set_status(
        self, student_id: str, course_id: UUID, status: str
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.student_id == student_id,
                EnrollmentRow.course_id == course_id,
            )
            .values(status=status)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get(student_id, course_id)

    async def set_cached_progress(
        self, student_id: str, course_id: UUID, progress: float
    ) -> None:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.student_id == student_id,
                EnrollmentRow.course_id == course_id,
            )
            .values(progress=progress)
        )
        await self._session.execute(stmt)

    async def list_for_course(self, course_id: UUID) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return await self._hydrate(list(rows))

    async def list_for_student(self, student_id: str) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.student_id == student_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return await self._hydrate(list(rows))

    async def update_entry(
        self,
        student_id: str,
        course_id: UUID,
        content_id: UUID,
        fn: EntryUpdate,
    ) -> tuple[ContentProgress | None, ContentProgress]:
        row = await self._lock_entry(student_id, course_id, content_id)
        if row is None:
            parent = (
                await self._session.execute(
                    select(EnrollmentRow)
                    .where(
                        EnrollmentRow.student_id == student_id,
                        EnrollmentRow.course_id == course_id,
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if parent is None:
                raise NotFoundError("enrollment", f"{student_id}/{course_id}")
            # another request may have created it while we waited
            row = await self._lock_entry(student_id, course_id, content_id)

        before = None
        if row is not None:
            attempts = await self._attempts_for(student_id, course_id, [content_id])
            before = _row_to_entry(row, attempts.get(content_id, []))

        after = fn(before)

        values = {
            "topic_id": after.topic_id,
            "content_type": after.content_type,
            "completion_status": after.completion_status,
            "progress_percentage": after.progress_percentage,
            "time_spent": after.time_spent,
            "last_accessed_at": after.last_accessed_at,
            "completed_at": after.completed_at,
            "best_score": after.best_score,
            "total_points": after.total_points,
            "watch_count": after.watch_count,
            "last_position": after.last_position,
            "applied_signals": list(after.applied_signals),
        }
        if row is None:
            self._session.add(
                ContentProgressRow(
                    student_id=student_id,
                    course_id=course_id,
                    content_id=content_id,
                    **values,
                )
            )
        else:
            for key, value in values.items():
                setattr(row, key, value)
        await self._session.flush()

        await self._sync_attempts(student_id, course_id, content_id, before, after)

        if after.last_accessed_at is not None:
            await self._session.execute(
                update(EnrollmentRow)
                .where(
                    EnrollmentRow.student_id == student_id,
                    EnrollmentRow.course_id == course_id,
                    (EnrollmentRow.last_accessed.is_(None))
                    | (EnrollmentRow.last_accessed < after.last_accessed_at),
                )
                .values(last_accessed=after.last_accessed_at)
            )
        return before, after

    # --- helpers ---

    async def _lock_entry(
        self, student_id: str, course_id: UUID, content_id: UUID
    ) -> ContentProgressRow | None:
        stmt = (
            select(ContentProgressRow)
            .where(
                ContentProgressRow.student_id == student_id,
                ContentProgressRow.course_id == course_id,
                ContentProgressRow.content_id == content_id,
            )
            .with_for_update()
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _sync_attempts(
        self,
        student_id: str,
        course_id: UUID,
        content_id: UUID,
        before: ContentProgress | None,
        after: ContentProgress,
    ) -> None:
        old_keys = {a.attempt_key for a in before.attempts} if before else set()
        new_keys = {a.attempt_key for a in after.attempts}

        dropped = old_keys - new_keys
        if dropped:
            await self._session.execute(
                delete(ContentAttemptRow).where(
                    ContentAttemptRow.student_id == student_id,
                    ContentAttemptRow.course_id == course_id,
                    ContentAttemptRow.content_id == content_id,
                    ContentAttemptRow.attempt_key.in_(dropped),
                )
            )

        for attempt in after.attempts:
            if attempt.attempt_key in old_keys:
                continue
            stmt = (
                insert(ContentAttemptRow)
                .values(
                    student_id=student_id,
                    course_id=course_id,
                    content_id=content_id,
                    attempt_key=attempt.attempt_key,
                    attempt_no=attempt.attempt_no,
                    score=attempt.score,
                    correct_count=attempt.correct_count,
                    total_count=attempt.total_count,
                    started_at=attempt.started_at,
                    submitted_at=attempt.submitted_at,
                    passed=attempt.passed,
                )
                .on_conflict_do_nothing(
                    index_elements=[
                        ContentAttemptRow.student_id,
                        ContentAttemptRow.course_id,
                        ContentAttemptRow.content_id,
                        ContentAttemptRow.attempt_key,
                    ]
                )
            )
            await self._session.execute(stmt)

    async def _attempts_for(
        self, student_id: str, course_id: UUID, content_ids: list[UUID] | None = None
    ) -> dict[UUID, list[ContentAttemptRow]]:
        stmt = select(ContentAttemptRow).where(
            ContentAttemptRow.student_id == student_id,
            ContentAttemptRow.course_id == course_id,
        )
        if content_ids is not None:
            stmt = stmt.where(ContentAttemptRow.content_id.in_(content_ids))
        stmt = stmt.order_by(ContentAttemptRow.attempt_no)
        grouped: dict[UUID, list[ContentAttemptRow]] = {}
        for row in (await self._session.execute(stmt)).scalars().all():
            grouped.setdefault(row.content_id, []).append(row)
        return grouped

    async def _hydrate(self, rows: list[EnrollmentRow]) -> list[Enrollment]:
        enrollments = []
        for row in rows:
            stmt = (
                select(ContentProgressRow)
                .where(
                    ContentProgressRow.student_id == row.student_id,
                    ContentProgressRow.course_id == row.course_id,
                )
                .order_by(ContentProgressRow.seq)
            )
            entry_rows = (await self._session.execute(stmt)).scalars().all()
            attempts = await self._attempts_for(row.student_id, row.course_id)
            enrollments.append(
                Enrollment(
                    student_id=row.student_id,
                    course_id=row.course_id,
                    status=row.status,
                    progress=row.progress,
                    enrolled_at=row.enrolled_at,
                    last_accessed=row.last_accessed,
                    starting_order=row.starting_order,
                    entries=tuple(
                        _row_to_entry(e, attempts.get(e.content_id, []))
                        for e in entry_rows
                    ),
                )
            )
        return enrollments


def _row_to_attempt(row: ContentAttemptRow) -> Attempt:
    return Attempt(
        attempt_key=row.attempt_key,
        attempt_no=row.attempt_no,
        score=row.score,
        correct_count=row.correct_count,
        total_count=row.total_count,
        started_at=row.started_at,
        submitted_at=row.submitted_at,
        passed=row.passed,
    )


def _row_to_entry(row: ContentProgressRow, attempts: list[ContentAttemptRow]) -> ContentProgress:
    return ContentProgress(
        content_id=row.content_id,
        topic_id=row.topic_id,
        content_type=row.content_type,
        completion_status=row.completion_status,
        progress_percentage=row.progress_percentage,
        time_spent=row.time_spent,
        last_accessed_at=row.last_accessed_at,
        completed_at=row.completed_at,
        attempts=tuple(_row_to_attempt(a) for a in attempts),
        best_score=row.best_score,
        total_points=row.total_points,
        watch_count=row.watch_count,
        last_position=row.last_position,
        applied_signals=tuple(row.applied_signals or ()),
    )
