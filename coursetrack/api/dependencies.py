from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from coursetrack.core.errors import (
    AlreadyEnrolledError,
    ContentLockedError,
    DuplicationError,
    EnrollmentInactiveError,
    InvalidCatalogEditError,
    InvalidSignalError,
    NotFoundError,
    ProgressEngineError,
)
from coursetrack.db.engine import get_async_session
from coursetrack.models.principal import Principal
from coursetrack.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from coursetrack.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from coursetrack.repos.pg_catalog_repo import PgCatalogRepo
from coursetrack.repos.pg_enrollment_repo import PgEnrollmentRepo
from coursetrack.repos.question_bank_repo import (
    InMemoryQuestionBankDirectory,
    PgQuestionBankDirectory,
    QuestionBankDirectory,
)
from coursetrack.services import token_service
from coursetrack.services.task_queue import Outbox

logger = logging.getLogger(__name__)

# tokenUrl points at the auth collaborator; it only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# Used when DATABASE_URL is unset (local dev, tests).
catalog_repo = InMemoryCatalogRepo()
enrollment_repo = InMemoryEnrollmentRepo()
question_banks = InMemoryQuestionBankDirectory()


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Validate the bearer token and return the caller as a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug("Token validated for user=%s roles=%s", principal.user_id, principal.roles)
    return principal


def require_role(role: str):
    """Dependency factory: Depends(require_role("admin"))."""

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s", principal.user_id, role
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


def require_any_role(roles: set[str]):
    """Dependency factory: Depends(require_any_role({"admin", "commerce"}))."""

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s", principal.user_id, roles
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


def get_catalog_repo(
    session: Annotated[AsyncSession | None, Depends(get_async_session)],
) -> CatalogRepo:
    if session is None:
        return catalog_repo
    return PgCatalogRepo(session)


def get_enrollment_repo(
    session: Annotated[AsyncSession | None, Depends(get_async_session)],
) -> EnrollmentRepo:
    if session is None:
        return enrollment_repo
    return PgEnrollmentRepo(session)


def get_question_bank_directory(
    session: Annotated[AsyncSession | None, Depends(get_async_session)],
) -> QuestionBankDirectory:
    if session is None:
        return question_banks
    return PgQuestionBankDirectory(session)


async def get_outbox(
    session: Annotated[AsyncSession | None, Depends(get_async_session)],
) -> AsyncGenerator[Outbox, None]:
    """Notifications for this request, queued only once its writes commit.

    Commits the shared request session itself before flushing; the
    session dependency's own commit afterwards is then a no-op.  If the
    endpoint or the commit raises, nothing is queued.
    """
    outbox = Outbox()
    yield outbox
    if session is not None:
        await session.commit()
    sent = await outbox.flush()
    if sent:
        logger.debug("Queued %d notification(s) after commit", len(sent))


Catalog = Annotated[CatalogRepo, Depends(get_catalog_repo)]
Enrollments = Annotated[EnrollmentRepo, Depends(get_enrollment_repo)]
QuestionBanks = Annotated[QuestionBankDirectory, Depends(get_question_bank_directory)]
Notifications = Annotated[Outbox, Depends(get_outbox)]


# ---------------------------------------------------------------------------
# Domain error -> HTTP
# ---------------------------------------------------------------------------


def http_error(e: ProgressEngineError) -> HTTPException:
    """Translate a domain error into the HTTPException the endpoint raises."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ContentLockedError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Content is locked", "reason": e.reason},
        )
    if isinstance(e, (InvalidSignalError, InvalidCatalogEditError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (EnrollmentInactiveError, AlreadyEnrolledError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, DuplicationError):
        code = (
            status.HTTP_502_BAD_GATEWAY if e.collaborator_failed else status.HTTP_409_CONFLICT
        )
        return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
