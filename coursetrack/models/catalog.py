"""Catalog domain model: courses, topics and content items.

A content item is a tagged union.  The variant is chosen by the settings
object it carries; each settings class owns its defaults and the
completion criterion that applies to it, so there is exactly one place a
passing score or attempt limit comes from.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import ClassVar, Literal
from uuid import UUID, uuid4

ContentType = Literal["video", "reading", "quiz", "homework", "live_session"]
CompletionCriterion = Literal["view", "pass_assessment", "attendance"]
UnlockCondition = Literal["immediate", "previous_completed", "quiz_passed"]
CourseStatus = Literal["draft", "published", "archived"]

UNLOCK_CONDITIONS: tuple[str, ...] = ("immediate", "previous_completed", "quiz_passed")


@dataclass(frozen=True, slots=True)
class QuestionRef:
    """Pointer into a shared question bank.  Never copied, only referenced."""

    question_id: UUID
    bank_id: UUID
    points: int = 1


@dataclass(frozen=True, slots=True)
class VideoSettings:
    type: ClassVar[str] = "video"
    criterion: ClassVar[str] = "view"

    url: str = ""
    duration_minutes: float = 0
    max_watch_count: int | None = None  # None = unlimited


@dataclass(frozen=True, slots=True)
class ReadingSettings:
    type: ClassVar[str] = "reading"
    criterion: ClassVar[str] = "view"

    url: str = ""


@dataclass(frozen=True, slots=True)
class QuizSettings:
    type: ClassVar[str] = "quiz"
    criterion: ClassVar[str] = "pass_assessment"

    questions: tuple[QuestionRef, ...] = ()
    passing_score: float = 60
    max_attempts: int = 3
    duration_minutes: int = 30
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_correct_answers: bool = True


@dataclass(frozen=True, slots=True)
class HomeworkSettings:
    type: ClassVar[str] = "homework"
    criterion: ClassVar[str] = "pass_assessment"

    questions: tuple[QuestionRef, ...] = ()
    # 0 means any graded submission counts as a pass.
    passing_score: float = 0
    max_attempts: int = 1
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_correct_answers: bool = False


@dataclass(frozen=True, slots=True)
class LiveSessionSettings:
    type: ClassVar[str] = "live_session"
    criterion: ClassVar[str] = "attendance"

    session_id: str = ""


ContentSettings = (
    VideoSettings | ReadingSettings | QuizSettings | HomeworkSettings | LiveSessionSettings
)
AssessmentSettings = QuizSettings | HomeworkSettings

SETTINGS_BY_TYPE: dict[str, type] = {
    "video": VideoSettings,
    "reading": ReadingSettings,
    "quiz": QuizSettings,
    "homework": HomeworkSettings,
    "live_session": LiveSessionSettings,
}


@dataclass(frozen=True, slots=True)
class ContentItem:
    id: UUID
    title: str
    order: int
    settings: ContentSettings
    is_required: bool = True
    prerequisites: frozenset[UUID] = frozenset()
    dependencies: frozenset[UUID] = frozenset()
    unlock_condition: str = "immediate"

    @property
    def type(self) -> str:
        return self.settings.type

    @property
    def completion_criteria(self) -> str:
        return self.settings.criterion

    @property
    def is_assessment(self) -> bool:
        return isinstance(self.settings, (QuizSettings, HomeworkSettings))

    def question_ids(self) -> frozenset[UUID]:
        if isinstance(self.settings, (QuizSettings, HomeworkSettings)):
            return frozenset(q.question_id for q in self.settings.questions)
        return frozenset()

    def total_points(self) -> int:
        if isinstance(self.settings, (QuizSettings, HomeworkSettings)):
            return sum(q.points for q in self.settings.questions)
        return 0

    @staticmethod
    def new(
        *,
        title: str,
        order: int,
        settings: ContentSettings,
        is_required: bool = True,
        prerequisites: frozenset[UUID] = frozenset(),
        dependencies: frozenset[UUID] = frozenset(),
        unlock_condition: str = "immediate",
    ) -> ContentItem:
        return ContentItem(
            id=uuid4(),
            title=title,
            order=order,
            settings=settings,
            is_required=is_required,
            prerequisites=prerequisites,
            dependencies=dependencies,
            unlock_condition=unlock_condition,
        )


@dataclass(frozen=True, slots=True)
class Topic:
    id: UUID
    course_id: UUID
    title: str
    order: int
    contents: tuple[ContentItem, ...] = ()
    unlock_condition: str = "immediate"
    is_published: bool = False

    def ordered_contents(self) -> list[ContentItem]:
        return sorted(self.contents, key=lambda c: c.order)

    def find(self, content_id: UUID) -> ContentItem | None:
        for item in self.contents:
            if item.id == content_id:
                return item
        return None

    def with_contents(self, contents: tuple[ContentItem, ...]) -> Topic:
        return replace(self, contents=tuple(sorted(contents, key=lambda c: c.order)))

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        order: int,
        unlock_condition: str = "immediate",
    ) -> Topic:
        return Topic(
            id=uuid4(),
            course_id=course_id,
            title=title,
            order=order,
            unlock_condition=unlock_condition,
        )


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    status: str = "draft"  # draft|published|archived
    topic_ids: tuple[UUID, ...] = ()
    requires_sequential: bool = True
    bundle_id: UUID | None = None
    order: int = 0

    @staticmethod
    def new(
        *,
        title: str,
        requires_sequential: bool = True,
        bundle_id: UUID | None = None,
        order: int = 0,
    ) -> Course:
        return Course(
            id=uuid4(),
            title=title,
            requires_sequential=requires_sequential,
            bundle_id=bundle_id,
            order=order,
        )


@dataclass(frozen=True, slots=True)
class CourseOutline:
    """A course with its topics resolved, in topic order."""

    course: Course
    topics: tuple[Topic, ...] = field(default_factory=tuple)

    def ordered_items(self) -> list[tuple[Topic, ContentItem]]:
        """Every content item in consumption order (topic order, then item order)."""
        ordered: list[tuple[Topic, ContentItem]] = []
        for topic in sorted(self.topics, key=lambda t: t.order):
            for item in topic.ordered_contents():
                ordered.append((topic, item))
        return ordered

    def locate(self, content_id: UUID) -> tuple[Topic, ContentItem] | None:
        for topic in self.topics:
            item = topic.find(content_id)
            if item is not None:
                return topic, item
        return None

    def all_item_ids(self) -> set[UUID]:
        return {item.id for topic in self.topics for item in topic.contents}


# ---------------------------------------------------------------------------
# Settings <-> plain dict (JSONB column, cache payloads)
# ---------------------------------------------------------------------------


def settings_to_dict(settings: ContentSettings) -> dict:
    data = asdict(settings)
    if "questions" in data:
        data["questions"] = [
            {
                "question_id": str(q["question_id"]),
                "bank_id": str(q["bank_id"]),
                "points": q["points"],
            }
            for q in data["questions"]
        ]
    return data


def settings_from_dict(content_type: str, data: dict) -> ContentSettings:
    cls = SETTINGS_BY_TYPE.get(content_type)
    if cls is None:
        raise ValueError(f"unknown content type {content_type!r}")
    kwargs = dict(data)
    if "questions" in kwargs:
        kwargs["questions"] = tuple(
            QuestionRef(
                question_id=UUID(str(q["question_id"])),
                bank_id=UUID(str(q["bank_id"])),
                points=int(q.get("points", 1)),
            )
            for q in kwargs["questions"]
        )
    return cls(**kwargs)
