"""Cross-student analytics (admin only).

Payloads are cached per course for ANALYTICS_CACHE_TTL seconds and
dropped whenever progress in that course changes.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from coursetrack.api.dependencies import Catalog, Enrollments, http_error, require_role
from coursetrack.core.errors import ProgressEngineError
from coursetrack.models.principal import Principal
from coursetrack.services import progress_service

router = APIRouter(prefix="/v1/admin/analytics", tags=["analytics"])

AdminPrincipal = Annotated[Principal, Depends(require_role("admin"))]


class ContentAnalyticsOut(BaseModel):
    content_id: UUID
    content_type: str
    viewers: int
    completions: int
    completion_rate: float
    average_score: float | None
    pass_rate: float | None
    best_performer: str | None
    best_score: float | None


class TopicAnalyticsOut(BaseModel):
    topic_id: UUID
    enrolled_students: int
    students_completed: int
    average_progress: float
    contents: list[ContentAnalyticsOut]


class CourseAnalyticsOut(BaseModel):
    course_id: UUID
    enrolled_students: int
    students_completed: int
    average_progress: float
    completion_rate: float
    topics: list[TopicAnalyticsOut]


@router.get("/courses/{course_id}", response_model=CourseAnalyticsOut)
async def get_course_analytics(
    course_id: UUID,
    _principal: AdminPrincipal,
    catalog: Catalog,
    enrollments: Enrollments,
) -> CourseAnalyticsOut:
    try:
        payload = await progress_service.course_analytics(catalog, enrollments, course_id)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return CourseAnalyticsOut(**payload)


@router.get("/topics/{topic_id}", response_model=TopicAnalyticsOut)
async def get_topic_analytics(
    topic_id: UUID,
    _principal: AdminPrincipal,
    catalog: Catalog,
    enrollments: Enrollments,
) -> TopicAnalyticsOut:
    try:
        payload = await progress_service.topic_analytics(catalog, enrollments, topic_id)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return TopicAnalyticsOut(**payload)


@router.get("/contents/{content_id}", response_model=ContentAnalyticsOut)
async def get_content_analytics(
    content_id: UUID,
    _principal: AdminPrincipal,
    catalog: Catalog,
    enrollments: Enrollments,
) -> ContentAnalyticsOut:
    try:
        payload = await progress_service.content_analytics(catalog, enrollments, content_id)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return ContentAnalyticsOut(**payload)
