"""Enrollment lifecycle endpoints, driven by the commerce collaborator.

Payment capture happens elsewhere; these routes only record the outcome.
Admins may call them too, e.g. to fix an enrollment by hand.
"""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from coursetrack.api.dependencies import (
    Catalog,
    Enrollments,
    http_error,
    require_any_role,
)
from coursetrack.core.errors import ProgressEngineError
from coursetrack.models.enrollment import Enrollment
from coursetrack.models.principal import Principal
from coursetrack.services import progress_service

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])

CommercePrincipal = Annotated[Principal, Depends(require_any_role({"admin", "commerce"}))]


class EnrollmentIn(BaseModel):
    student_id: str = Field(min_length=1, max_length=320)
    course_id: UUID
    starting_order: int | None = Field(default=None, ge=0)


class EnrollmentStatusIn(BaseModel):
    status: Literal["active", "completed", "paused", "cancelled"]


class EnrollmentOut(BaseModel):
    student_id: str
    course_id: UUID
    status: str
    progress: float
    enrolled_at: int
    last_accessed: int | None
    starting_order: int | None


def _out(e: Enrollment) -> EnrollmentOut:
    return EnrollmentOut(
        student_id=e.student_id,
        course_id=e.course_id,
        status=e.status,
        progress=e.progress,
        enrolled_at=e.enrolled_at,
        last_accessed=e.last_accessed,
        starting_order=e.starting_order,
    )


@router.post("", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
async def enroll(
    body: EnrollmentIn,
    _principal: CommercePrincipal,
    catalog: Catalog,
    enrollments: Enrollments,
) -> EnrollmentOut:
    try:
        enrollment = await progress_service.enroll(
            catalog,
            enrollments,
            body.student_id,
            body.course_id,
            starting_order=body.starting_order,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _out(enrollment)


@router.delete("/{student_id}/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll(
    student_id: str,
    course_id: UUID,
    _principal: CommercePrincipal,
    enrollments: Enrollments,
) -> None:
    try:
        await progress_service.unenroll(enrollments, student_id, course_id)
    except ProgressEngineError as e:
        raise http_error(e) from None


@router.patch("/{student_id}/{course_id}/status", response_model=EnrollmentOut)
async def set_status(
    student_id: str,
    course_id: UUID,
    body: EnrollmentStatusIn,
    _principal: CommercePrincipal,
    enrollments: Enrollments,
) -> EnrollmentOut:
    try:
        enrollment = await progress_service.set_enrollment_status(
            enrollments, student_id, course_id, body.status
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _out(enrollment)
