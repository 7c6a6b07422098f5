"""Topic and course duplication with ID remapping.

Copying happens in two passes over the source items:

  1. give every copyable item a new id, recording old -> new
  2. rewrite prerequisites/dependencies of the copies through that map

A reference whose target was not copied (a live session, or an item in
another topic when a single topic is duplicated) is dropped, so a copy
can never point back into the original.

Live-session items are not copied; they are bound to a provider session
and have to be recreated by hand.  Their ids come back in the result.

Question refs are shared with the original.  Each referenced bank is
looked up first; a missing bank or a failing lookup aborts everything.
All writes go through ``catalog.transaction()``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from uuid import UUID, uuid4

from coursetrack.core.errors import DuplicationError, NotFoundError
from coursetrack.core.metrics import DUPLICATIONS
from coursetrack.models.catalog import ContentItem, Course, Topic
from coursetrack.repos.catalog_repo import CatalogRepo
from coursetrack.repos.question_bank_repo import QuestionBankDirectory

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"


@dataclass(frozen=True, slots=True)
class DuplicationResult:
    source_id: UUID
    new_id: UUID
    id_map: dict[UUID, UUID]
    skipped_live_sessions: tuple[UUID, ...]


def copy_items(
    items: Iterable[ContentItem], id_map: dict[UUID, UUID]
) -> tuple[list[ContentItem], list[UUID]]:
    """First pass: fresh ids for everything except live sessions.

    ``id_map`` is filled in place so a course copy can build one map
    across all of its topics before remapping.
    """
    copies: list[ContentItem] = []
    skipped: list[UUID] = []
    for item in items:
        if item.type == "live_session":
            skipped.append(item.id)
            continue
        new_id = uuid4()
        id_map[item.id] = new_id
        copies.append(replace(item, id=new_id))
    return copies, skipped


def remap_references(items: Iterable[ContentItem], id_map: dict[UUID, UUID]) -> list[ContentItem]:
    """Second pass: rewrite references through the map, dropping unmapped ids."""
    return [
        replace(
            item,
            prerequisites=frozenset(id_map[p] for p in item.prerequisites if p in id_map),
            dependencies=frozenset(id_map[d] for d in item.dependencies if d in id_map),
        )
        for item in items
    ]


async def _check_question_banks(banks: QuestionBankDirectory, topics: Iterable[Topic]) -> None:
    bank_ids = {
        q.bank_id
        for topic in topics
        for item in topic.contents
        if item.is_assessment
        for q in item.settings.questions  # type: ignore[union-attr]
    }
    for bank_id in sorted(bank_ids):
        try:
            found = await banks.exists(bank_id)
        except Exception as e:
            raise DuplicationError(
                f"question bank lookup failed for {bank_id}: {e}", collaborator_failed=True
            ) from e
        if not found:
            raise DuplicationError(
                f"question bank {bank_id} not found", collaborator_failed=True
            )


def _copy_topic(
    topic: Topic, *, course_id: UUID, order: int, title: str, id_map: dict[UUID, UUID]
) -> tuple[Topic, list[UUID]]:
    copies, skipped = copy_items(topic.ordered_contents(), id_map)
    new_topic = Topic(
        id=uuid4(),
        course_id=course_id,
        title=title,
        order=order,
        contents=tuple(copies),
        unlock_condition=topic.unlock_condition,
        is_published=False,
    )
    return new_topic, skipped


async def duplicate_topic(
    catalog: CatalogRepo,
    banks: QuestionBankDirectory,
    topic_id: UUID,
) -> DuplicationResult:
    """Copy a topic to the end of its own course, unpublished."""
    source = await catalog.get_topic(topic_id)
    if source is None:
        raise NotFoundError("topic", topic_id)

    try:
        await _check_question_banks(banks, [source])
        async with catalog.transaction() as tx:
            course = await tx.get_course(source.course_id)
            if course is None:
                raise NotFoundError("course", source.course_id)
            outline = await tx.get_outline(course.id)
            last_order = max((t.order for t in outline.topics), default=0) if outline else 0

            id_map: dict[UUID, UUID] = {}
            new_topic, skipped = _copy_topic(
                source,
                course_id=course.id,
                order=last_order + 1,
                title=f"{source.title}{COPY_SUFFIX}",
                id_map=id_map,
            )
            new_topic = new_topic.with_contents(tuple(remap_references(new_topic.contents, id_map)))

            await tx.save_topic(new_topic)
            await tx.save_course(replace(course, topic_ids=course.topic_ids + (new_topic.id,)))
    except DuplicationError:
        DUPLICATIONS.labels(scope="topic", outcome="rolled_back").inc()
        logger.warning("Topic duplication rolled back: topic=%s", topic_id)
        raise
    except NotFoundError:
        raise
    except Exception as e:
        DUPLICATIONS.labels(scope="topic", outcome="rolled_back").inc()
        logger.exception("Topic duplication failed: topic=%s", topic_id)
        raise DuplicationError(f"topic duplication failed: {e}") from e

    DUPLICATIONS.labels(scope="topic", outcome="committed").inc()
    logger.info(
        "Topic duplicated: source=%s copy=%s items=%d skipped_live_sessions=%d",
        topic_id,
        new_topic.id,
        len(id_map),
        len(skipped),
    )
    return DuplicationResult(
        source_id=topic_id,
        new_id=new_topic.id,
        id_map=id_map,
        skipped_live_sessions=tuple(skipped),
    )


async def duplicate_course(
    catalog: CatalogRepo,
    banks: QuestionBankDirectory,
    course_id: UUID,
) -> DuplicationResult:
    """Copy a course and all of its topics as a standalone draft."""
    outline = await catalog.get_outline(course_id)
    if outline is None:
        raise NotFoundError("course", course_id)

    try:
        await _check_question_banks(banks, outline.topics)
        async with catalog.transaction() as tx:
            new_course = Course(
                id=uuid4(),
                title=f"{outline.course.title}{COPY_SUFFIX}",
                status="draft",
                requires_sequential=outline.course.requires_sequential,
            )
            id_map: dict[UUID, UUID] = {}
            skipped: list[UUID] = []
            new_topics: list[Topic] = []
            for topic in outline.topics:
                copy, topic_skipped = _copy_topic(
                    topic,
                    course_id=new_course.id,
                    order=topic.order,
                    title=topic.title,
                    id_map=id_map,
                )
                new_topics.append(copy)
                skipped.extend(topic_skipped)

            # remap only once every topic is copied, so cross-topic references survive
            for copy in new_topics:
                await tx.save_topic(
                    copy.with_contents(tuple(remap_references(copy.contents, id_map)))
                )
            await tx.save_course(
                replace(new_course, topic_ids=tuple(t.id for t in new_topics))
            )
    except DuplicationError:
        DUPLICATIONS.labels(scope="course", outcome="rolled_back").inc()
        logger.warning("Course duplication rolled back: course=%s", course_id)
        raise
    except Exception as e:
        DUPLICATIONS.labels(scope="course", outcome="rolled_back").inc()
        logger.exception("Course duplication failed: course=%s", course_id)
        raise DuplicationError(f"course duplication failed: {e}") from e

    DUPLICATIONS.labels(scope="course", outcome="committed").inc()
    logger.info(
        "Course duplicated: source=%s copy=%s topics=%d items=%d skipped_live_sessions=%d",
        course_id,
        new_course.id,
        len(new_topics),
        len(id_map),
        len(skipped),
    )
    return DuplicationResult(
        source_id=course_id,
        new_id=new_course.id,
        id_map=id_map,
        skipped_live_sessions=tuple(skipped),
    )
