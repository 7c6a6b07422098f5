"""Domain error taxonomy for the progress engine.

Services raise these; the HTTP layer maps them to status codes in
coursetrack/api/dependencies.py.  Nothing here imports FastAPI.
"""

from __future__ import annotations

from uuid import UUID


class ProgressEngineError(Exception):
    """Base class for every error this service raises on purpose."""


class NotFoundError(ProgressEngineError):
    def __init__(self, entity: str, ident: object) -> None:
        super().__init__(f"{entity} not found: {ident}")
        self.entity = entity
        self.ident = ident


class InvalidSignalError(ProgressEngineError):
    """A view/attempt/attendance signal was rejected before any mutation."""


class ContentLockedError(ProgressEngineError):
    def __init__(self, content_id: UUID, reason: str) -> None:
        super().__init__(f"content {content_id} is locked: {reason}")
        self.content_id = content_id
        self.reason = reason


class EnrollmentInactiveError(ProgressEngineError):
    def __init__(self, status: str) -> None:
        super().__init__(f"enrollment is {status}")
        self.status = status


class AlreadyEnrolledError(ProgressEngineError):
    pass


class InvalidCatalogEditError(ProgressEngineError):
    pass


class DuplicationError(ProgressEngineError):
    """Aggregate failure of a duplication transaction.

    ``collaborator_failed`` is True when an external lookup (question bank)
    caused the abort rather than the catalog itself.
    """

    def __init__(self, message: str, *, collaborator_failed: bool = False) -> None:
        super().__init__(message)
        self.collaborator_failed = collaborator_failed
