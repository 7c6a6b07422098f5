"""Catalog administration endpoints (admin only).

Structure edits, prerequisite edits, publishing and duplication.  The
settings object of a content item is validated against its type: an
unknown key or a value out of range is a 422.
"""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from coursetrack.api.dependencies import Catalog, QuestionBanks, http_error, require_role
from coursetrack.core.errors import InvalidCatalogEditError, NotFoundError, ProgressEngineError
from coursetrack.models.catalog import (
    ContentItem,
    Course,
    Topic,
    settings_from_dict,
    settings_to_dict,
)
from coursetrack.models.principal import Principal
from coursetrack.services import catalog_service, duplication

router = APIRouter(prefix="/v1/admin", tags=["catalog"])

ContentTypeIn = Literal["video", "reading", "quiz", "homework", "live_session"]
UnlockConditionIn = Literal["immediate", "previous_completed", "quiz_passed"]

AdminPrincipal = Annotated[Principal, Depends(require_role("admin"))]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CourseIn(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    requires_sequential: bool = True
    bundle_id: UUID | None = None
    order: int = 0


class CourseStatusIn(BaseModel):
    status: Literal["draft", "published", "archived"]


class TopicIn(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    unlock_condition: UnlockConditionIn = "immediate"


class ContentIn(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    type: ContentTypeIn
    order: int | None = None
    is_required: bool = True
    prerequisites: list[UUID] = []
    dependencies: list[UUID] = []
    unlock_condition: UnlockConditionIn = "immediate"
    settings: dict = {}


class PrerequisitesIn(BaseModel):
    prerequisites: list[UUID]
    dependencies: list[UUID] | None = None


class PublishIn(BaseModel):
    published: bool = True


class CourseOut(BaseModel):
    id: UUID
    title: str
    status: str
    topic_ids: list[UUID]
    requires_sequential: bool
    bundle_id: UUID | None
    order: int


class ContentOut(BaseModel):
    id: UUID
    title: str
    type: str
    order: int
    completion_criteria: str
    is_required: bool
    prerequisites: list[UUID]
    dependencies: list[UUID]
    unlock_condition: str
    settings: dict


class TopicOut(BaseModel):
    id: UUID
    course_id: UUID
    title: str
    order: int
    unlock_condition: str
    is_published: bool
    contents: list[ContentOut]


class OutlineOut(BaseModel):
    course: CourseOut
    topics: list[TopicOut]


class DuplicationOut(BaseModel):
    source_id: UUID
    new_id: UUID
    id_map: dict[str, UUID]
    skipped_live_sessions: list[UUID]


def _course_out(c: Course) -> CourseOut:
    return CourseOut(
        id=c.id,
        title=c.title,
        status=c.status,
        topic_ids=list(c.topic_ids),
        requires_sequential=c.requires_sequential,
        bundle_id=c.bundle_id,
        order=c.order,
    )


def _content_out(i: ContentItem) -> ContentOut:
    return ContentOut(
        id=i.id,
        title=i.title,
        type=i.type,
        order=i.order,
        completion_criteria=i.completion_criteria,
        is_required=i.is_required,
        prerequisites=sorted(i.prerequisites),
        dependencies=sorted(i.dependencies),
        unlock_condition=i.unlock_condition,
        settings=settings_to_dict(i.settings),
    )


def _topic_out(t: Topic) -> TopicOut:
    return TopicOut(
        id=t.id,
        course_id=t.course_id,
        title=t.title,
        order=t.order,
        unlock_condition=t.unlock_condition,
        is_published=t.is_published,
        contents=[_content_out(i) for i in t.ordered_contents()],
    )


# ---------------------------------------------------------------------------
# Courses and topics
# ---------------------------------------------------------------------------


@router.post("/courses", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def create_course(body: CourseIn, _principal: AdminPrincipal, catalog: Catalog) -> CourseOut:
    try:
        course = await catalog_service.create_course(
            catalog,
            title=body.title,
            requires_sequential=body.requires_sequential,
            bundle_id=body.bundle_id,
            order=body.order,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _course_out(course)


@router.get("/courses/{course_id}", response_model=OutlineOut)
async def get_course_outline(
    course_id: UUID, _principal: AdminPrincipal, catalog: Catalog
) -> OutlineOut:
    outline = await catalog.get_outline(course_id)
    if outline is None:
        raise http_error(NotFoundError("course", course_id))
    return OutlineOut(
        course=_course_out(outline.course),
        topics=[_topic_out(t) for t in outline.topics],
    )


@router.patch("/courses/{course_id}/status", response_model=CourseOut)
async def set_course_status(
    course_id: UUID, body: CourseStatusIn, _principal: AdminPrincipal, catalog: Catalog
) -> CourseOut:
    try:
        course = await catalog_service.set_course_status(catalog, course_id, body.status)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _course_out(course)


@router.post(
    "/courses/{course_id}/topics",
    response_model=TopicOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_topic(
    course_id: UUID, body: TopicIn, _principal: AdminPrincipal, catalog: Catalog
) -> TopicOut:
    try:
        topic = await catalog_service.create_topic(
            catalog, course_id, title=body.title, unlock_condition=body.unlock_condition
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _topic_out(topic)


@router.post("/topics/{topic_id}/publish", response_model=TopicOut)
async def publish_topic(
    topic_id: UUID, body: PublishIn, _principal: AdminPrincipal, catalog: Catalog
) -> TopicOut:
    try:
        topic = await catalog_service.publish_topic(catalog, topic_id, published=body.published)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _topic_out(topic)


# ---------------------------------------------------------------------------
# Content items
# ---------------------------------------------------------------------------


@router.post(
    "/topics/{topic_id}/contents",
    response_model=ContentOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_content(
    topic_id: UUID, body: ContentIn, _principal: AdminPrincipal, catalog: Catalog
) -> ContentOut:
    try:
        try:
            settings = settings_from_dict(body.type, body.settings)
        except (TypeError, ValueError, KeyError) as e:
            raise InvalidCatalogEditError(f"invalid {body.type} settings: {e}") from None
        item = await catalog_service.add_content(
            catalog,
            topic_id,
            title=body.title,
            settings=settings,
            order=body.order,
            is_required=body.is_required,
            prerequisites=frozenset(body.prerequisites),
            dependencies=frozenset(body.dependencies),
            unlock_condition=body.unlock_condition,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _content_out(item)


@router.put("/contents/{content_id}/prerequisites", response_model=ContentOut)
async def set_prerequisites(
    content_id: UUID, body: PrerequisitesIn, _principal: AdminPrincipal, catalog: Catalog
) -> ContentOut:
    try:
        item = await catalog_service.set_prerequisites(
            catalog,
            content_id,
            prerequisites=frozenset(body.prerequisites),
            dependencies=frozenset(body.dependencies) if body.dependencies is not None else None,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _content_out(item)


# ---------------------------------------------------------------------------
# Duplication
# ---------------------------------------------------------------------------


def _duplication_out(result: duplication.DuplicationResult) -> DuplicationOut:
    return DuplicationOut(
        source_id=result.source_id,
        new_id=result.new_id,
        id_map={str(k): v for k, v in result.id_map.items()},
        skipped_live_sessions=list(result.skipped_live_sessions),
    )


@router.post(
    "/topics/{topic_id}/duplicate",
    response_model=DuplicationOut,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_topic(
    topic_id: UUID, _principal: AdminPrincipal, catalog: Catalog, banks: QuestionBanks
) -> DuplicationOut:
    try:
        result = await duplication.duplicate_topic(catalog, banks, topic_id)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _duplication_out(result)


@router.post(
    "/courses/{course_id}/duplicate",
    response_model=DuplicationOut,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_course(
    course_id: UUID, _principal: AdminPrincipal, catalog: Catalog, banks: QuestionBanks
) -> DuplicationOut:
    try:
        result = await duplication.duplicate_course(catalog, banks, course_id)
    except ProgressEngineError as e:
        raise http_error(e) from None
    return _duplication_out(result)
