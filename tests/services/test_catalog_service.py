from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from coursetrack.core.errors import InvalidCatalogEditError, NotFoundError
from coursetrack.models.catalog import QuizSettings, ReadingSettings, VideoSettings
from coursetrack.repos.catalog_repo import InMemoryCatalogRepo
from coursetrack.services import catalog_service


def _course_with_topic(catalog: InMemoryCatalogRepo):
    async def build():
        course = await catalog_service.create_course(catalog, title="Python 101")
        topic = await catalog_service.create_topic(catalog, course.id, title="Basics")
        return course, topic

    return asyncio.run(build())


def test_topics_append_in_order() -> None:
    catalog = InMemoryCatalogRepo()

    async def scenario():
        course = await catalog_service.create_course(catalog, title="C")
        t1 = await catalog_service.create_topic(catalog, course.id, title="One")
        t2 = await catalog_service.create_topic(catalog, course.id, title="Two")
        return course, t1, t2, await catalog.get_outline(course.id)

    course, t1, t2, outline = asyncio.run(scenario())
    assert (t1.order, t2.order) == (1, 2)
    assert outline.course.topic_ids == (t1.id, t2.id)


def test_create_topic_unknown_course() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(catalog_service.create_topic(InMemoryCatalogRepo(), uuid4(), title="x"))


def test_create_topic_rejects_unknown_unlock_condition() -> None:
    catalog = InMemoryCatalogRepo()
    course, _ = _course_with_topic(catalog)
    with pytest.raises(InvalidCatalogEditError, match="unlock_condition"):
        asyncio.run(
            catalog_service.create_topic(catalog, course.id, title="x", unlock_condition="always")
        )


def test_add_content_defaults_order_to_end() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)

    async def scenario():
        a = await catalog_service.add_content(catalog, topic.id, title="A", settings=ReadingSettings())
        b = await catalog_service.add_content(catalog, topic.id, title="B", settings=VideoSettings())
        return a, b

    a, b = asyncio.run(scenario())
    assert (a.order, b.order) == (1, 2)
    assert b.completion_criteria == "view"


def test_add_content_rejects_bad_passing_score() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)
    with pytest.raises(InvalidCatalogEditError, match="passing_score"):
        asyncio.run(
            catalog_service.add_content(
                catalog, topic.id, title="Q", settings=QuizSettings(passing_score=120)
            )
        )


def test_add_content_rejects_prerequisite_from_other_course() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)
    with pytest.raises(InvalidCatalogEditError, match="not part of course"):
        asyncio.run(
            catalog_service.add_content(
                catalog,
                topic.id,
                title="Q",
                settings=QuizSettings(),
                prerequisites=frozenset({uuid4()}),
            )
        )


def test_set_prerequisites_rejects_cycle() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)

    async def scenario():
        a = await catalog_service.add_content(catalog, topic.id, title="A", settings=ReadingSettings())
        b = await catalog_service.add_content(
            catalog, topic.id, title="B", settings=ReadingSettings(), prerequisites=frozenset({a.id})
        )
        await catalog_service.set_prerequisites(catalog, a.id, prerequisites=frozenset({b.id}))

    with pytest.raises(InvalidCatalogEditError, match="cycle"):
        asyncio.run(scenario())


def test_set_prerequisites_rejects_self_reference() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)

    async def scenario():
        a = await catalog_service.add_content(catalog, topic.id, title="A", settings=ReadingSettings())
        await catalog_service.set_prerequisites(catalog, a.id, prerequisites=frozenset({a.id}))

    with pytest.raises(InvalidCatalogEditError, match="own prerequisite"):
        asyncio.run(scenario())


def test_set_prerequisites_keeps_dependencies_when_omitted() -> None:
    catalog = InMemoryCatalogRepo()
    _, topic = _course_with_topic(catalog)

    async def scenario():
        a = await catalog_service.add_content(catalog, topic.id, title="A", settings=ReadingSettings())
        b = await catalog_service.add_content(
            catalog, topic.id, title="B", settings=ReadingSettings(), dependencies=frozenset({a.id})
        )
        updated = await catalog_service.set_prerequisites(
            catalog, b.id, prerequisites=frozenset({a.id})
        )
        stored = await catalog.locate_content(b.id)
        return a, updated, stored

    a, updated, (_, _, stored) = asyncio.run(scenario())
    assert updated.prerequisites == frozenset({a.id})
    assert updated.dependencies == frozenset({a.id})
    assert stored == updated


def test_publish_and_course_status() -> None:
    catalog = InMemoryCatalogRepo()
    course, topic = _course_with_topic(catalog)

    async def scenario():
        published = await catalog_service.publish_topic(catalog, topic.id)
        archived = await catalog_service.set_course_status(catalog, course.id, "archived")
        return published, archived

    published, archived = asyncio.run(scenario())
    assert published.is_published is True
    assert archived.status == "archived"


def test_unknown_course_status_rejected() -> None:
    catalog = InMemoryCatalogRepo()
    course, _ = _course_with_topic(catalog)
    with pytest.raises(InvalidCatalogEditError):
        asyncio.run(catalog_service.set_course_status(catalog, course.id, "deleted"))
