from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID

# cap on remembered signal identities per entry; attempts are matched on
# their own attempt_key instead
MAX_APPLIED_SIGNALS = 64

COMPLETION_STATUSES = ("not_started", "in_progress", "completed", "failed")
ENROLLMENT_STATUSES = ("active", "completed", "paused", "cancelled")


@dataclass(frozen=True, slots=True)
class Attempt:
    attempt_key: str
    attempt_no: int
    score: float
    correct_count: int
    total_count: int
    started_at: int
    submitted_at: int
    passed: bool


@dataclass(frozen=True, slots=True)
class ContentProgress:
    """One student's state for one content item."""

    content_id: UUID
    topic_id: UUID
    content_type: str
    completion_status: str = "not_started"  # not_started|in_progress|completed|failed
    progress_percentage: float = 0
    time_spent: float = 0  # minutes
    last_accessed_at: int | None = None
    completed_at: int | None = None
    attempts: tuple[Attempt, ...] = ()
    best_score: float | None = None
    total_points: int = 0
    watch_count: int = 0
    last_position: float = 0
    applied_signals: tuple[str, ...] = ()

    @property
    def is_completed(self) -> bool:
        return self.completion_status == "completed"

    @property
    def latest_attempt(self) -> Attempt | None:
        return self.attempts[-1] if self.attempts else None

    def has_applied(self, signal_key: str) -> bool:
        if signal_key.startswith("attempt:"):
            return any(signal_key == f"attempt:{a.attempt_key}" for a in self.attempts)
        return signal_key in self.applied_signals

    def remember(self, signal_key: str) -> tuple[str, ...]:
        """applied_signals after recording signal_key."""
        if signal_key.startswith("attempt:"):
            return self.applied_signals
        kept = self.applied_signals
        if signal_key.startswith("heartbeat:"):
            kept = tuple(k for k in kept if not k.startswith("heartbeat:"))
        return (kept + (signal_key,))[-MAX_APPLIED_SIGNALS:]

    @staticmethod
    def fresh(*, content_id: UUID, topic_id: UUID, content_type: str) -> ContentProgress:
        return ContentProgress(
            content_id=content_id, topic_id=topic_id, content_type=content_type
        )

    def reset(self) -> ContentProgress:
        """State after an admin reset: attempts and completion wiped."""
        return replace(
            self,
            completion_status="not_started",
            progress_percentage=0,
            completed_at=None,
            attempts=(),
            best_score=None,
            applied_signals=(),
        )


@dataclass(frozen=True, slots=True)
class Enrollment:
    student_id: str
    course_id: UUID
    status: str = "active"  # active|completed|paused|cancelled
    progress: float = 0  # cached hint; the aggregator is the source of truth
    enrolled_at: int = 0
    last_accessed: int | None = None
    starting_order: int | None = None
    entries: tuple[ContentProgress, ...] = ()

    @property
    def accepts_signals(self) -> bool:
        return self.status in ("active", "completed")

    def entry_for(self, content_id: UUID) -> ContentProgress | None:
        for entry in self.entries:
            if entry.content_id == content_id:
                return entry
        return None

    def completed_ids(self) -> set[UUID]:
        return {e.content_id for e in self.entries if e.is_completed}

    def with_entry(self, entry: ContentProgress) -> Enrollment:
        """Replace the entry for entry.content_id, or append it (keeps order)."""
        updated: list[ContentProgress] = []
        found = False
        for existing in self.entries:
            if existing.content_id == entry.content_id:
                updated.append(entry)
                found = True
            else:
                updated.append(existing)
        if not found:
            updated.append(entry)
        return replace(self, entries=tuple(updated))
