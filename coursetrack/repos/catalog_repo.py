from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from coursetrack.models.catalog import ContentItem, Course, CourseOutline, Topic


class CatalogRepo(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def list_bundle_courses(self, bundle_id: UUID) -> list[Course]: ...
    async def get_topic(self, topic_id: UUID) -> Topic | None: ...
    async def get_outline(self, course_id: UUID) -> CourseOutline | None: ...
    async def locate_content(
        self, content_id: UUID
    ) -> tuple[Course, Topic, ContentItem] | None: ...
    async def save_course(self, course: Course) -> None: ...
    async def save_topic(self, topic: Topic) -> None: ...
    def transaction(self) -> AbstractAsyncContextManager[CatalogRepo]: ...


@dataclass
class _CatalogState:
    courses: dict[UUID, Course] = field(default_factory=dict)
    topics: dict[UUID, Topic] = field(default_factory=dict)
    # content id -> topic id
    content_index: dict[UUID, UUID] = field(default_factory=dict)

    def copy(self) -> _CatalogState:
        return _CatalogState(
            courses=dict(self.courses),
            topics=dict(self.topics),
            content_index=dict(self.content_index),
        )


class InMemoryCatalogRepo:
    """Dict-backed catalog.

    Writes made inside ``transaction()`` go to a staged copy of the state
    and are swapped in as a whole on success; readers see either the old
    catalog or the new one, never a partial subtree.
    """

    def __init__(self, state: _CatalogState | None = None) -> None:
        self._state = state or _CatalogState()
        self._lock = asyncio.Lock()

    def clear(self) -> None:
        self._state = _CatalogState()
        self._lock = asyncio.Lock()

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._state.courses.get(course_id)

    async def list_bundle_courses(self, bundle_id: UUID) -> list[Course]:
        found = [c for c in self._state.courses.values() if c.bundle_id == bundle_id]
        return sorted(found, key=lambda c: c.order)

    async def get_topic(self, topic_id: UUID) -> Topic | None:
        return self._state.topics.get(topic_id)

    async def get_outline(self, course_id: UUID) -> CourseOutline | None:
        course = self._state.courses.get(course_id)
        if course is None:
            return None
        topics = [self._state.topics[t] for t in course.topic_ids if t in self._state.topics]
        return CourseOutline(
            course=course, topics=tuple(sorted(topics, key=lambda t: t.order))
        )

    async def locate_content(
        self, content_id: UUID
    ) -> tuple[Course, Topic, ContentItem] | None:
        topic_id = self._state.content_index.get(content_id)
        if topic_id is None:
            return None
        topic = self._state.topics[topic_id]
        item = topic.find(content_id)
        course = self._state.courses.get(topic.course_id)
        if item is None or course is None:
            return None
        return course, topic, item

    async def save_course(self, course: Course) -> None:
        async with self._lock:
            self._state.courses[course.id] = course

    async def save_topic(self, topic: Topic) -> None:
        async with self._lock:
            previous = self._state.topics.get(topic.id)
            if previous is not None:
                for item in previous.contents:
                    self._state.content_index.pop(item.id, None)
            self._state.topics[topic.id] = topic
            for item in topic.contents:
                self._state.content_index[item.id] = topic.id

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryCatalogRepo]:
        async with self._lock:
            staged = InMemoryCatalogRepo(self._state.copy())
            yield staged
            # only reached when the block exits cleanly
            self._state = staged._state
