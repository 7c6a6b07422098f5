from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from coursetrack.api.dependencies import catalog_repo, enrollment_repo, question_banks
from coursetrack.core.config import SETTINGS
from coursetrack.main import app
from coursetrack.models.catalog import (
    SETTINGS_BY_TYPE,
    ContentItem,
    Course,
    CourseOutline,
    QuestionRef,
    Topic,
)
from coursetrack.models.enrollment import Enrollment
from coursetrack.repos.catalog_repo import CatalogRepo
from coursetrack.repos.enrollment_repo import EnrollmentRepo
from coursetrack.services import token_service
from coursetrack.services.cache import cache_service
from coursetrack.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import coursetrack` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Clear the in-memory catalog and enrollments between tests."""
    catalog_repo.clear()
    enrollment_repo.clear()
    question_banks.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# Stands in for the auth service: tests sign with this key and the app
# verifies against its public half.  Derived from a constant so every
# import of this module agrees on it.
TEST_SIGNING_KEY = ec.derive_private_key(0x5EEDC0DE, ec.SECP256R1())
token_service.configure(TEST_SIGNING_KEY.public_key())


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
    ttl_minutes: int = 15,
    *,
    key: ec.EllipticCurvePrivateKey = TEST_SIGNING_KEY,
    audience: str | None = None,
) -> str:
    """Create an ES256 JWT shaped like the auth service's access tokens."""
    now = datetime.now(UTC)
    payload = {
        "sub": username,
        "iss": SETTINGS.jwt_issuer,
        "aud": audience or SETTINGS.jwt_audience,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, key, algorithm="ES256")


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token for student "test-user"."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


def item(
    content_type: str,
    order: int,
    *,
    title: str | None = None,
    is_required: bool = True,
    prerequisites: frozenset[UUID] = frozenset(),
    dependencies: frozenset[UUID] = frozenset(),
    unlock_condition: str = "immediate",
    **settings,
) -> ContentItem:
    """Build a content item; extra keyword arguments become its settings."""
    return ContentItem.new(
        title=title or f"{content_type} {order}",
        order=order,
        settings=SETTINGS_BY_TYPE[content_type](**settings),
        is_required=is_required,
        prerequisites=prerequisites,
        dependencies=dependencies,
        unlock_condition=unlock_condition,
    )


def questions(bank_id: UUID, count: int, points: int = 1) -> tuple[QuestionRef, ...]:
    return tuple(
        QuestionRef(question_id=uuid4(), bank_id=bank_id, points=points)
        for _ in range(count)
    )


async def save_course(
    catalog: CatalogRepo,
    topics: list[list[ContentItem]],
    *,
    title: str = "Course",
    requires_sequential: bool = False,
    bundle_id: UUID | None = None,
    order: int = 0,
    topic_conditions: list[str] | None = None,
) -> CourseOutline:
    course = Course.new(
        title=title, requires_sequential=requires_sequential, bundle_id=bundle_id, order=order
    )
    saved: list[Topic] = []
    for idx, contents in enumerate(topics):
        topic = Topic.new(
            course_id=course.id,
            title=f"Topic {idx + 1}",
            order=idx + 1,
            unlock_condition=topic_conditions[idx] if topic_conditions else "immediate",
        ).with_contents(tuple(contents))
        await catalog.save_topic(topic)
        saved.append(topic)
    course = Course(
        id=course.id,
        title=course.title,
        status="published",
        topic_ids=tuple(t.id for t in saved),
        requires_sequential=requires_sequential,
        bundle_id=bundle_id,
        order=order,
    )
    await catalog.save_course(course)
    outline = await catalog.get_outline(course.id)
    assert outline is not None
    return outline


def seed_course(topics: list[list[ContentItem]], **kwargs) -> CourseOutline:
    """save_course against the app's in-memory catalog, for API tests."""
    return asyncio.run(save_course(catalog_repo, topics, **kwargs))


async def add_enrollment(
    enrollments: EnrollmentRepo,
    student_id: str,
    course_id: UUID,
    *,
    status: str = "active",
    starting_order: int | None = None,
) -> Enrollment:
    enrollment = Enrollment(
        student_id=student_id,
        course_id=course_id,
        status=status,
        enrolled_at=1_700_000_000,
        starting_order=starting_order,
    )
    await enrollments.add(enrollment)
    return enrollment


def seed_enrollment(student_id: str, course_id: UUID, **kwargs) -> Enrollment:
    return asyncio.run(add_enrollment(enrollment_repo, student_id, course_id, **kwargs))
