"""Completion evaluator.

``evaluate(item, current, signal)`` is pure: it takes the catalog item,
the student's current Content-Progress entry (or None on first touch) and
one signal, and returns the next entry.  It never performs I/O and never
moves a completed entry backwards; only ContentProgress.reset() does that.

Validation happens before anything is computed, so a rejected signal
raises InvalidSignalError and the caller keeps the previous state.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from uuid import UUID

from coursetrack.core.errors import InvalidSignalError
from coursetrack.models.catalog import (
    ContentItem,
    HomeworkSettings,
    QuizSettings,
    VideoSettings,
)
from coursetrack.models.enrollment import Attempt, ContentProgress
from coursetrack.models.signals import (
    AttemptSignal,
    AttendanceSignal,
    Signal,
    ViewSignal,
    signal_key,
)
from coursetrack.services.watch import coverage_percentage, is_watch_sufficient

logger = logging.getLogger(__name__)

ATTENDANCE_COMPLETION_THRESHOLD = 50.0


def evaluate(
    item: ContentItem,
    current: ContentProgress | None,
    signal: Signal | None,
    *,
    topic_id: UUID,
) -> ContentProgress:
    base = current or ContentProgress.fresh(
        content_id=item.id, topic_id=topic_id, content_type=item.type
    )
    if signal is None:
        return base

    key = signal_key(signal)
    if base.has_applied(key):
        return base

    if isinstance(signal, ViewSignal):
        nxt = _apply_view(item, base, signal)
    elif isinstance(signal, AttemptSignal):
        nxt = _apply_attempt(item, base, signal)
    elif isinstance(signal, AttendanceSignal):
        nxt = _apply_attendance(item, base, signal)
    else:
        raise InvalidSignalError(f"unsupported signal {type(signal).__name__}")

    return _finish(base, nxt, key, signal.occurred_at)


def _finish(
    before: ContentProgress, after: ContentProgress, key: str, occurred_at: int
) -> ContentProgress:
    # completed is terminal short of an explicit reset
    if before.is_completed:
        after = replace(
            after, completion_status="completed", completed_at=before.completed_at
        )
    elif after.is_completed and after.completed_at is None:
        after = replace(after, completed_at=occurred_at)

    last = before.last_accessed_at
    return replace(
        after,
        last_accessed_at=occurred_at if last is None else max(last, occurred_at),
        applied_signals=before.remember(key),
    )


def _touch(progress: ContentProgress) -> ContentProgress:
    if progress.completion_status == "not_started":
        return replace(progress, completion_status="in_progress")
    return progress


# ---------------------------------------------------------------------------
# view criterion
# ---------------------------------------------------------------------------


def _apply_view(
    item: ContentItem, progress: ContentProgress, signal: ViewSignal
) -> ContentProgress:
    if not 0 <= signal.progress_percentage <= 100:
        raise InvalidSignalError("progress_percentage must be between 0 and 100")
    if signal.time_spent < 0 or signal.last_position < 0:
        raise InvalidSignalError("time_spent and last_position must be non-negative")

    if item.completion_criteria != "view":
        # Opening a quiz, homework or live session only records access.
        return _touch(progress)

    settings = item.settings
    watch_count = progress.watch_count
    if signal.completes and isinstance(settings, VideoSettings):
        if (
            settings.max_watch_count is not None
            and progress.watch_count >= settings.max_watch_count
        ):
            raise InvalidSignalError(
                f"watch limit reached ({settings.max_watch_count} views)"
            )
        if signal.watch is not None and not is_watch_sufficient(signal.watch):
            coverage = coverage_percentage(signal.watch) or 0.0
            raise InvalidSignalError(
                f"video must be watched before completing (covered {coverage:.1f}%)"
            )
        watch_count += 1

    status = "completed" if signal.completes else "in_progress"
    if progress.is_completed:
        status = "completed"

    return replace(
        progress,
        completion_status=status,
        progress_percentage=max(
            progress.progress_percentage,
            100.0 if signal.completes else signal.progress_percentage,
        ),
        time_spent=max(progress.time_spent, signal.time_spent),
        last_position=signal.last_position,
        watch_count=watch_count,
    )


# ---------------------------------------------------------------------------
# pass-assessment criterion
# ---------------------------------------------------------------------------


def _validate_attempt(
    item: ContentItem,
    settings: QuizSettings | HomeworkSettings,
    progress: ContentProgress,
    signal: AttemptSignal,
) -> None:
    if not 0 <= signal.score <= 100:
        raise InvalidSignalError("score must be between 0 and 100")
    if signal.correct_count < 0 or signal.total_count < 0:
        raise InvalidSignalError("question counts must be non-negative")
    if signal.correct_count > signal.total_count:
        raise InvalidSignalError("correct_count cannot exceed total_count")

    unknown = signal.answered_question_ids - item.question_ids()
    if unknown:
        raise InvalidSignalError(
            f"{len(unknown)} answered question(s) are not part of this {item.type}"
        )

    if progress.completion_status == "failed":
        raise InvalidSignalError("no attempts remaining")
    if len(progress.attempts) >= settings.max_attempts:
        raise InvalidSignalError(
            f"maximum attempts reached ({settings.max_attempts})"
        )


def _apply_attempt(
    item: ContentItem, progress: ContentProgress, signal: AttemptSignal
) -> ContentProgress:
    settings = item.settings
    if not isinstance(settings, (QuizSettings, HomeworkSettings)):
        raise InvalidSignalError(f"{item.type} content does not accept attempts")
    _validate_attempt(item, settings, progress, signal)

    attempt = Attempt(
        attempt_key=signal.attempt_key,
        attempt_no=len(progress.attempts) + 1,
        score=signal.score,
        correct_count=signal.correct_count,
        total_count=signal.total_count,
        started_at=signal.started_at if signal.started_at is not None else signal.occurred_at,
        submitted_at=signal.occurred_at,
        passed=signal.score >= settings.passing_score,
    )
    attempts = progress.attempts + (attempt,)
    best = max(a.score for a in attempts)

    if progress.is_completed or attempt.passed:
        status = "completed"
    elif len(attempts) >= settings.max_attempts:
        status = "failed"
    else:
        status = "in_progress"

    logger.debug(
        "Attempt %d on content=%s score=%.1f passed=%s status=%s",
        attempt.attempt_no,
        item.id,
        attempt.score,
        attempt.passed,
        status,
    )

    return replace(
        progress,
        completion_status=status,
        attempts=attempts,
        best_score=best,
        total_points=item.total_points(),
        progress_percentage=100.0 if status == "completed" else progress.progress_percentage,
    )


# ---------------------------------------------------------------------------
# attendance criterion
# ---------------------------------------------------------------------------


def _apply_attendance(
    item: ContentItem, progress: ContentProgress, signal: AttendanceSignal
) -> ContentProgress:
    if item.completion_criteria != "attendance":
        raise InvalidSignalError(f"{item.type} content is not completed by attendance")
    if not 0 <= signal.attendance_percentage <= 100:
        raise InvalidSignalError("attendance_percentage must be between 0 and 100")

    if signal.attendance_percentage >= ATTENDANCE_COMPLETION_THRESHOLD:
        status = "completed"
    elif signal.attendance_percentage > 0:
        status = "in_progress"
    else:
        status = progress.completion_status

    return replace(
        progress,
        completion_status=status,
        progress_percentage=max(progress.progress_percentage, signal.attendance_percentage),
        time_spent=max(progress.time_spent, signal.time_spent),
    )
