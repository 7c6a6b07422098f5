from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StatusChange:
    """A camera/microphone transition reported by the live-session provider.

    ``None`` means the field did not change in this event.
    """

    at: int
    camera: bool | None = None
    microphone: bool | None = None


@dataclass(frozen=True, slots=True)
class JoinEvent:
    join_time: int
    leave_time: int | None = None  # None while the participant is still in the room
    camera_on_at_join: bool | None = None  # unknown -> off
    microphone_on_at_join: bool | None = None
    timeline: tuple[StatusChange, ...] = ()


@dataclass(frozen=True, slots=True)
class AttendanceRecord:
    student_id: str
    join_events: tuple[JoinEvent, ...] = ()


@dataclass(frozen=True, slots=True)
class SessionWindow:
    """Actual start/end of a live session (epoch seconds)."""

    started_at: int
    ended_at: int

    @property
    def duration_seconds(self) -> int:
        return max(0, self.ended_at - self.started_at)


@dataclass(frozen=True, slots=True)
class AttendanceOutcome:
    student_id: str
    attendance_percentage: float
    camera_on_percentage: float
    camera_opened: bool
    joined_late: bool
    total_time_spent: float  # minutes
    # unrounded; the completion threshold is checked against this
    exact_attendance_percentage: float = 0.0
