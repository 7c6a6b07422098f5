"""Catalog administration: courses, topics, content items, prerequisites.

Structural rules enforced here rather than in the repos:
  - prerequisite/dependency ids must name items of the same course
  - the prerequisite graph stays acyclic (self-references included)
  - unlock conditions come from a fixed set
"""

from __future__ import annotations

import logging
from dataclasses import replace
from uuid import UUID

from coursetrack.core.errors import InvalidCatalogEditError, NotFoundError
from coursetrack.models.catalog import (
    UNLOCK_CONDITIONS,
    ContentItem,
    ContentSettings,
    Course,
    CourseOutline,
    HomeworkSettings,
    QuizSettings,
    Topic,
    VideoSettings,
)
from coursetrack.repos.catalog_repo import CatalogRepo
from coursetrack.services.graph import find_cycle, prerequisite_edges

logger = logging.getLogger(__name__)


def _check_unlock_condition(value: str) -> None:
    if value not in UNLOCK_CONDITIONS:
        raise InvalidCatalogEditError(
            f"unlock_condition must be one of {'|'.join(UNLOCK_CONDITIONS)} (got {value!r})"
        )


def _check_settings(settings: ContentSettings) -> None:
    if isinstance(settings, (QuizSettings, HomeworkSettings)):
        if not 0 <= settings.passing_score <= 100:
            raise InvalidCatalogEditError("passing_score must be between 0 and 100")
        if settings.max_attempts < 1:
            raise InvalidCatalogEditError("max_attempts must be at least 1")
    if isinstance(settings, VideoSettings):
        if settings.max_watch_count is not None and settings.max_watch_count < 1:
            raise InvalidCatalogEditError("max_watch_count must be at least 1 when set")
        if settings.duration_minutes < 0:
            raise InvalidCatalogEditError("duration_minutes must not be negative")


def _check_references(
    outline: CourseOutline,
    item_id: UUID | None,
    prerequisites: frozenset[UUID],
    dependencies: frozenset[UUID],
) -> None:
    known = outline.all_item_ids()
    unknown = (prerequisites | dependencies) - known
    if unknown:
        raise InvalidCatalogEditError(
            f"{len(unknown)} referenced item(s) are not part of course {outline.course.id}"
        )
    if item_id is not None and item_id in prerequisites:
        raise InvalidCatalogEditError("an item cannot be its own prerequisite")


def _check_acyclic(outline: CourseOutline, item_id: UUID, prerequisites: frozenset[UUID]) -> None:
    edges = prerequisite_edges(outline)
    edges[item_id] = prerequisites
    cycle = find_cycle(edges)
    if cycle is not None:
        raise InvalidCatalogEditError(
            "prerequisites would create a cycle: " + " -> ".join(str(c) for c in cycle)
        )


async def create_course(
    catalog: CatalogRepo,
    *,
    title: str,
    requires_sequential: bool = True,
    bundle_id: UUID | None = None,
    order: int = 0,
) -> Course:
    if not title.strip():
        raise InvalidCatalogEditError("course title must not be empty")
    course = Course.new(
        title=title.strip(),
        requires_sequential=requires_sequential,
        bundle_id=bundle_id,
        order=order,
    )
    await catalog.save_course(course)
    logger.info("Course created: id=%s title=%r", course.id, course.title)
    return course


async def set_course_status(catalog: CatalogRepo, course_id: UUID, status: str) -> Course:
    if status not in ("draft", "published", "archived"):
        raise InvalidCatalogEditError(f"unknown course status {status!r}")
    course = await catalog.get_course(course_id)
    if course is None:
        raise NotFoundError("course", course_id)
    updated = replace(course, status=status)
    await catalog.save_course(updated)
    logger.info("Course %s status %s -> %s", course_id, course.status, status)
    return updated


async def create_topic(
    catalog: CatalogRepo,
    course_id: UUID,
    *,
    title: str,
    unlock_condition: str = "immediate",
) -> Topic:
    """Append a topic after the course's current last topic."""
    _check_unlock_condition(unlock_condition)
    async with catalog.transaction() as tx:
        outline = await tx.get_outline(course_id)
        if outline is None:
            raise NotFoundError("course", course_id)

        order = max((t.order for t in outline.topics), default=0) + 1
        topic = Topic.new(
            course_id=course_id, title=title, order=order, unlock_condition=unlock_condition
        )
        await tx.save_topic(topic)
        await tx.save_course(
            replace(outline.course, topic_ids=outline.course.topic_ids + (topic.id,))
        )
    logger.info("Topic created: id=%s course=%s order=%d", topic.id, course_id, order)
    return topic


async def add_content(
    catalog: CatalogRepo,
    topic_id: UUID,
    *,
    title: str,
    settings: ContentSettings,
    order: int | None = None,
    is_required: bool = True,
    prerequisites: frozenset[UUID] = frozenset(),
    dependencies: frozenset[UUID] = frozenset(),
    unlock_condition: str = "immediate",
) -> ContentItem:
    _check_unlock_condition(unlock_condition)
    _check_settings(settings)
    topic = await catalog.get_topic(topic_id)
    if topic is None:
        raise NotFoundError("topic", topic_id)
    outline = await catalog.get_outline(topic.course_id)
    if outline is None:
        raise NotFoundError("course", topic.course_id)

    if order is None:
        order = max((i.order for i in topic.contents), default=0) + 1
    item = ContentItem.new(
        title=title,
        order=order,
        settings=settings,
        is_required=is_required,
        prerequisites=prerequisites,
        dependencies=dependencies,
        unlock_condition=unlock_condition,
    )
    # a brand-new item has no dependents, so it cannot close a cycle
    _check_references(outline, None, prerequisites, dependencies)

    await catalog.save_topic(topic.with_contents(topic.contents + (item,)))
    logger.info(
        "Content added: id=%s type=%s topic=%s order=%d",
        item.id,
        item.type,
        topic_id,
        order,
    )
    return item


async def set_prerequisites(
    catalog: CatalogRepo,
    content_id: UUID,
    *,
    prerequisites: frozenset[UUID],
    dependencies: frozenset[UUID] | None = None,
) -> ContentItem:
    located = await catalog.locate_content(content_id)
    if located is None:
        raise NotFoundError("content", content_id)
    course, topic, item = located
    outline = await catalog.get_outline(course.id)
    if outline is None:
        raise NotFoundError("course", course.id)

    deps = item.dependencies if dependencies is None else dependencies
    _check_references(outline, content_id, prerequisites, deps)
    _check_acyclic(outline, content_id, prerequisites)

    updated = replace(item, prerequisites=prerequisites, dependencies=deps)
    contents = tuple(updated if c.id == content_id else c for c in topic.contents)
    await catalog.save_topic(topic.with_contents(contents))
    logger.info(
        "Prerequisites updated: content=%s prerequisites=%d dependencies=%d",
        content_id,
        len(prerequisites),
        len(deps),
    )
    return updated


async def publish_topic(catalog: CatalogRepo, topic_id: UUID, *, published: bool = True) -> Topic:
    topic = await catalog.get_topic(topic_id)
    if topic is None:
        raise NotFoundError("topic", topic_id)
    updated = replace(topic, is_published=published)
    await catalog.save_topic(updated)
    logger.info("Topic %s %s", topic_id, "published" if published else "unpublished")
    return updated
