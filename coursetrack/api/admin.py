"""Admin progress endpoints.

Reads of any student's progress, and the irreversible attempt reset.
Every route requires the admin role.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from coursetrack.api.dependencies import (
    Catalog,
    Enrollments,
    QuestionBanks,
    http_error,
    require_role,
)
from coursetrack.api.progress import EntryOut, ProgressSummaryOut, entry_out, summary_out
from coursetrack.core.errors import ProgressEngineError
from coursetrack.models.principal import Principal
from coursetrack.services import progress_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class ResetAttemptsIn(BaseModel):
    student_id: str
    course_id: UUID
    content_id: UUID


@router.get(
    "/students/{student_id}/progress/{course_id}",
    response_model=ProgressSummaryOut,
)
async def get_student_progress(
    student_id: str,
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
    catalog: Catalog,
    enrollments: Enrollments,
) -> ProgressSummaryOut:
    try:
        summary = await progress_service.progress_summary(
            catalog, enrollments, student_id, course_id
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    logger.info(
        "Admin %s viewed progress of student=%s course=%s",
        principal.user_id,
        student_id,
        course_id,
    )
    return summary_out(summary)


@router.post("/progress/reset-attempts", response_model=EntryOut)
async def reset_attempts(
    body: ResetAttemptsIn,
    principal: Annotated[Principal, Depends(require_role("admin"))],
    catalog: Catalog,
    enrollments: Enrollments,
) -> EntryOut:
    try:
        entry = await progress_service.reset_attempts(
            catalog,
            enrollments,
            body.student_id,
            body.course_id,
            body.content_id,
            admin_id=principal.user_id,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return entry_out(entry)


@router.put("/question-banks/{bank_id}", status_code=status.HTTP_204_NO_CONTENT)
async def register_question_bank(
    bank_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
    banks: QuestionBanks,
) -> None:
    """Record a bank id as known to the local question-bank directory."""
    await banks.register(bank_id)
    logger.info("Question bank %s registered by admin=%s", bank_id, principal.user_id)
