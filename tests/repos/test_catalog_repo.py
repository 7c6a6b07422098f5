from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from coursetrack.models.catalog import Course, Topic
from coursetrack.repos.catalog_repo import InMemoryCatalogRepo
from tests.conftest import item, save_course


def test_outline_follows_topic_order() -> None:
    catalog = InMemoryCatalogRepo()
    a, b = item("reading", 1), item("video", 1)
    outline = asyncio.run(save_course(catalog, [[a], [b]]))
    assert [t.order for t in outline.topics] == [1, 2]
    assert [i.id for _, i in outline.ordered_items()] == [a.id, b.id]


def test_locate_content_after_topic_edit() -> None:
    catalog = InMemoryCatalogRepo()
    a, b = item("reading", 1), item("video", 2)

    async def scenario():
        outline = await save_course(catalog, [[a, b]])
        topic = outline.topics[0]
        await catalog.save_topic(topic.with_contents((a,)))
        return outline, await catalog.locate_content(a.id), await catalog.locate_content(b.id)

    outline, found, gone = asyncio.run(scenario())
    assert found[0].id == outline.course.id
    assert found[2] == a
    assert gone is None


def test_transaction_commits_as_a_whole() -> None:
    catalog = InMemoryCatalogRepo()
    course = Course.new(title="C")

    async def scenario():
        async with catalog.transaction() as tx:
            topic = Topic.new(course_id=course.id, title="T", order=1)
            await tx.save_topic(topic)
            await tx.save_course(replace(course, topic_ids=(topic.id,)))
            # not visible outside until the block exits
            assert await catalog.get_course(course.id) is None
        return await catalog.get_outline(course.id)

    outline = asyncio.run(scenario())
    assert len(outline.topics) == 1


def test_transaction_rolls_back_on_error() -> None:
    catalog = InMemoryCatalogRepo()
    course = Course.new(title="C")

    async def scenario():
        with pytest.raises(RuntimeError):
            async with catalog.transaction() as tx:
                await tx.save_course(course)
                raise RuntimeError("abort")
        return await catalog.get_course(course.id)

    assert asyncio.run(scenario()) is None


def test_bundle_courses_sorted_by_order() -> None:
    catalog = InMemoryCatalogRepo()
    bundle = Course.new(title="x").id

    async def scenario():
        await catalog.save_course(Course.new(title="W2", bundle_id=bundle, order=2))
        await catalog.save_course(Course.new(title="W1", bundle_id=bundle, order=1))
        await catalog.save_course(Course.new(title="Other"))
        return await catalog.list_bundle_courses(bundle)

    assert [c.title for c in asyncio.run(scenario())] == ["W1", "W2"]
