from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

import pytest

from coursetrack.core.errors import DuplicationError
from coursetrack.repos.catalog_repo import InMemoryCatalogRepo
from coursetrack.repos.question_bank_repo import InMemoryQuestionBankDirectory
from coursetrack.services.duplication import (
    duplicate_course,
    duplicate_topic,
    remap_references,
)
from tests.conftest import item, questions, save_course


class _BrokenBanks:
    async def exists(self, bank_id: UUID) -> bool:
        raise ConnectionError("question bank service unavailable")


def test_topic_copy_remaps_prerequisites_and_drops_live_sessions() -> None:
    catalog = InMemoryCatalogRepo()
    a = item("reading", 1, title="A")
    c = item("live_session", 3, title="C", session_id="zoom-1")
    b = item(
        "video",
        2,
        title="B",
        prerequisites=frozenset({a.id}),
        dependencies=frozenset({c.id}),
    )

    async def scenario():
        outline = await save_course(catalog, [[a, b, c]])
        result = await duplicate_topic(catalog, InMemoryQuestionBankDirectory(), outline.topics[0].id)
        return outline, result, await catalog.get_outline(outline.course.id)

    outline, result, after = asyncio.run(scenario())

    assert result.skipped_live_sessions == (c.id,)
    assert set(result.id_map) == {a.id, b.id}

    copy = next(t for t in after.topics if t.id == result.new_id)
    assert copy.title == "Topic 1 (Copy)"
    assert copy.is_published is False
    assert copy.order == 2
    assert after.course.topic_ids[-1] == copy.id

    new_b = copy.find(result.id_map[b.id])
    assert new_b.prerequisites == frozenset({result.id_map[a.id]})
    assert new_b.dependencies == frozenset()
    assert all(i.type != "live_session" for i in copy.contents)

    # the source topic is untouched
    source = next(t for t in after.topics if t.id == outline.topics[0].id)
    assert source.find(b.id).prerequisites == frozenset({a.id})


def test_course_copy_keeps_cross_topic_references() -> None:
    catalog = InMemoryCatalogRepo()
    a = item("reading", 1)
    b = item("quiz", 1, prerequisites=frozenset({a.id}))

    async def scenario():
        outline = await save_course(catalog, [[a], [b]], title="Week 1", bundle_id=uuid4())
        result = await duplicate_course(catalog, InMemoryQuestionBankDirectory(), outline.course.id)
        return result, await catalog.get_outline(result.new_id)

    result, copy = asyncio.run(scenario())

    assert copy.course.title == "Week 1 (Copy)"
    assert copy.course.status == "draft"
    assert copy.course.bundle_id is None
    assert [t.title for t in copy.topics] == ["Topic 1", "Topic 2"]
    new_b = copy.locate(result.id_map[b.id])[1]
    assert new_b.prerequisites == frozenset({result.id_map[a.id]})


def test_question_refs_are_shared_not_copied() -> None:
    catalog = InMemoryCatalogRepo()
    bank = uuid4()
    banks = InMemoryQuestionBankDirectory()
    quiz = item("quiz", 1, questions=questions(bank, 2))

    async def scenario():
        await banks.register(bank)
        outline = await save_course(catalog, [[quiz]])
        return await duplicate_topic(catalog, banks, outline.topics[0].id)

    result = asyncio.run(scenario())
    located = asyncio.run(catalog.locate_content(result.id_map[quiz.id]))
    assert located[2].question_ids() == quiz.question_ids()


def test_missing_bank_rolls_back_everything() -> None:
    catalog = InMemoryCatalogRepo()
    quiz = item("quiz", 1, questions=questions(uuid4(), 1))
    outline = asyncio.run(save_course(catalog, [[item("reading", 1)], [quiz]]))

    with pytest.raises(DuplicationError) as excinfo:
        asyncio.run(
            duplicate_course(catalog, InMemoryQuestionBankDirectory(), outline.course.id)
        )

    assert excinfo.value.collaborator_failed is True
    # nothing was written: still only the original course's topics
    assert len(catalog._state.courses) == 1
    assert len(catalog._state.topics) == 2


def test_bank_lookup_failure_is_collaborator_error() -> None:
    catalog = InMemoryCatalogRepo()
    quiz = item("quiz", 1, questions=questions(uuid4(), 1))
    outline = asyncio.run(save_course(catalog, [[quiz]]))

    with pytest.raises(DuplicationError, match="lookup failed") as excinfo:
        asyncio.run(duplicate_topic(catalog, _BrokenBanks(), outline.topics[0].id))
    assert excinfo.value.collaborator_failed is True
    assert len(asyncio.run(catalog.get_outline(outline.course.id)).topics) == 1


def test_remap_drops_references_outside_the_copy() -> None:
    outside = uuid4()
    a = item("reading", 1)
    b = item("reading", 2, prerequisites=frozenset({a.id, outside}))
    new_a, new_b = uuid4(), uuid4()

    (remapped,) = remap_references([b], {a.id: new_a, b.id: new_b})
    assert remapped.prerequisites == frozenset({new_a})
