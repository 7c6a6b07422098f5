"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from coursetrack.db.tables import ContentItemRow, CourseRow, TopicRow
from coursetrack.models.catalog import (
    ContentItem,
    Course,
    CourseOutline,
    Topic,
    settings_from_dict,
    settings_to_dict,
)


class PgCatalogRepo:
    """Satisfies the CatalogRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        if row is None:
            return None
        return _row_to_course(row)

    async def list_bundle_courses(self, bundle_id: UUID) -> list[Course]:
        stmt = (
            select(CourseRow)
            .where(CourseRow.bundle_id == bundle_id)
            .order_by(CourseRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course(r) for r in rows]

    async def get_topic(self, topic_id: UUID) -> Topic | None:
        row = await self._session.get(TopicRow, topic_id)
        if row is None:
            return None
        items = await self._items_for([topic_id])
        return _row_to_topic(row, items.get(topic_id, []))

    async def get_outline(self, course_id: UUID) -> CourseOutline | None:
        course = await self.get_course(course_id)
        if course is None:
            return None
        stmt = (
            select(TopicRow)
            .where(TopicRow.course_id == course_id)
            .order_by(TopicRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        items = await self._items_for([r.id for r in rows])
        topics = tuple(_row_to_topic(r, items.get(r.id, [])) for r in rows)
        return CourseOutline(course=course, topics=topics)

    async def locate_content(
        self, content_id: UUID
    ) -> tuple[Course, Topic, ContentItem] | None:
        stmt = select(ContentItemRow.topic_id).where(ContentItemRow.id == content_id)
        topic_id = (await self._session.execute(stmt)).scalar_one_or_none()
        if topic_id is None:
            return None
        topic = await self.get_topic(topic_id)
        if topic is None:
            return None
        course = await self.get_course(topic.course_id)
        item = topic.find(content_id)
        if course is None or item is None:
            return None
        return course, topic, item

    async def save_course(self, course: Course) -> None:
        values = {
            "id": course.id,
            "title": course.title,
            "status": course.status,
            "topic_ids": list(course.topic_ids),
            "requires_sequential": course.requires_sequential,
            "bundle_id": course.bundle_id,
            "position": course.order,
        }
        stmt = insert(CourseRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CourseRow.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        await self._session.execute(stmt)

    async def save_topic(self, topic: Topic) -> None:
        values = {
            "id": topic.id,
            "course_id": topic.course_id,
            "title": topic.title,
            "position": topic.order,
            "unlock_condition": topic.unlock_condition,
            "is_published": topic.is_published,
        }
        stmt = insert(TopicRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TopicRow.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        await self._session.execute(stmt)

        keep = [item.id for item in topic.contents]
        prune = delete(ContentItemRow).where(ContentItemRow.topic_id == topic.id)
        if keep:
            prune = prune.where(ContentItemRow.id.not_in(keep))
        await self._session.execute(prune)

        for item in topic.contents:
            item_values = {
                "id": item.id,
                "topic_id": topic.id,
                "title": item.title,
                "position": item.order,
                "content_type": item.type,
                "settings": settings_to_dict(item.settings),
                "is_required": item.is_required,
                "prerequisites": sorted(item.prerequisites),
                "dependencies": sorted(item.dependencies),
                "unlock_condition": item.unlock_condition,
            }
            item_stmt = insert(ContentItemRow).values(**item_values)
            item_stmt = item_stmt.on_conflict_do_update(
                index_elements=[ContentItemRow.id],
                set_={k: v for k, v in item_values.items() if k != "id"},
            )
            await self._session.execute(item_stmt)
        await self._session.flush()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PgCatalogRepo]:
        # SAVEPOINT inside the request transaction; released on success,
        # rolled back (and the error re-raised) on failure.
        async with self._session.begin_nested():
            yield self

    async def _items_for(self, topic_ids: list[UUID]) -> dict[UUID, list[ContentItemRow]]:
        if not topic_ids:
            return {}
        stmt = (
            select(ContentItemRow)
            .where(ContentItemRow.topic_id.in_(topic_ids))
            .order_by(ContentItemRow.position)
        )
        grouped: dict[UUID, list[ContentItemRow]] = {}
        for row in (await self._session.execute(stmt)).scalars().all():
            grouped.setdefault(row.topic_id, []).append(row)
        return grouped


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        title=row.title,
        status=row.status,
        topic_ids=tuple(row.topic_ids or ()),
        requires_sequential=row.requires_sequential,
        bundle_id=row.bundle_id,
        order=row.position,
    )


def _row_to_item(row: ContentItemRow) -> ContentItem:
    return ContentItem(
        id=row.id,
        title=row.title,
        order=row.position,
        settings=settings_from_dict(row.content_type, row.settings or {}),
        is_required=row.is_required,
        prerequisites=frozenset(row.prerequisites or ()),
        dependencies=frozenset(row.dependencies or ()),
        unlock_condition=row.unlock_condition,
    )


def _row_to_topic(row: TopicRow, items: list[ContentItemRow]) -> Topic:
    return Topic(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        order=row.position,
        contents=tuple(_row_to_item(i) for i in items),
        unlock_condition=row.unlock_condition,
        is_published=row.is_published,
    )
