"""Student interaction signals fed to the completion evaluator.

Every signal has an identity.  Callers may supply one explicitly
(``signal_id`` for views, ``attempt_key`` for attempts); otherwise the
identity is a fingerprint of the payload minus its timestamp, so a
retried request with the same body is recognised as already applied.
Two genuinely separate but identical views (watching a video through a
second time) need distinct signal ids to both count.

Progress pings (keyless views that do not complete the item) are already
idempotent through max-merging, so an entry only remembers the most
recent one, which is enough to absorb a retried request.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class WatchSegment:
    start: float
    end: float


@dataclass(frozen=True, slots=True)
class WatchData:
    """Client-side playback evidence attached to a completing video view."""

    watched_segments: tuple[WatchSegment, ...] = ()
    video_duration: float = 0  # seconds
    reported_percentage: float = 0


@dataclass(frozen=True, slots=True)
class ViewSignal:
    occurred_at: int
    progress_percentage: float = 0
    viewed: bool = False
    time_spent: float = 0  # cumulative minutes for this item
    last_position: float = 0
    watch: WatchData | None = None
    signal_id: str | None = None

    kind = "view"

    @property
    def completes(self) -> bool:
        return self.viewed or self.progress_percentage >= 100


@dataclass(frozen=True, slots=True)
class AttemptSignal:
    attempt_key: str
    occurred_at: int
    score: float
    correct_count: int = 0
    total_count: int = 0
    answered_question_ids: frozenset[UUID] = frozenset()
    started_at: int | None = None

    kind = "attempt"


@dataclass(frozen=True, slots=True)
class AttendanceSignal:
    occurred_at: int
    attendance_percentage: float
    time_spent: float = 0  # minutes
    session_id: str | None = None

    kind = "attendance"


Signal = ViewSignal | AttemptSignal | AttendanceSignal


def _fingerprint(payload: dict) -> str:
    blob = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(blob.encode()).hexdigest()


def signal_key(signal: Signal) -> str:
    """Stable identity used to detect a replayed signal."""
    if isinstance(signal, AttemptSignal):
        return f"attempt:{signal.attempt_key}"
    if isinstance(signal, ViewSignal) and signal.signal_id:
        return f"view:{signal.signal_id}"
    if isinstance(signal, ViewSignal) and not signal.completes:
        # a progress ping; only the latest one is remembered per entry
        return f"heartbeat:{_fingerprint(_payload(signal))}"
    return f"{signal.kind}:{_fingerprint(_payload(signal))}"


def _payload(signal: Signal) -> dict:
    payload = asdict(signal)
    # receive time differs between retries of the same request
    payload.pop("occurred_at")
    if "answered_question_ids" in payload:
        payload["answered_question_ids"] = sorted(
            str(q) for q in payload["answered_question_ids"]
        )
    return payload
