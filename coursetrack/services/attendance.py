"""Live-session attendance analytics.

Reconstructs, from the provider's sparse event log, how long a student
was in the session, how much of that time their camera was on, and
whether they joined late.

Per join event the timeline is a list of state changes, not samples:
the camera state holds from one change to the next.  Walking it:

    join ──on──┬──off──┬──on── leave
               t1      t2

    camera-on = (t1 - join) + (leave - t2)

Missing data degrades to the safe default (camera off) rather than
raising; a record with no join events is simply zero attendance.
"""

from __future__ import annotations

from coursetrack.models.attendance import (
    AttendanceOutcome,
    AttendanceRecord,
    JoinEvent,
    SessionWindow,
)

CAMERA_OPENED_THRESHOLD = 80.0
LATE_JOIN_SECONDS = 30 * 60


def _event_end(event: JoinEvent, window: SessionWindow) -> int:
    return event.leave_time if event.leave_time is not None else window.ended_at


def event_seconds(event: JoinEvent, window: SessionWindow) -> int:
    return max(0, _event_end(event, window) - event.join_time)


def camera_on_seconds(event: JoinEvent, window: SessionWindow) -> int:
    start = event.join_time
    end = _event_end(event, window)
    if end <= start:
        return 0

    camera_on = bool(event.camera_on_at_join)
    cursor = start
    on_seconds = 0
    for change in sorted(event.timeline, key=lambda c: c.at):
        at = min(max(change.at, start), end)
        if camera_on:
            on_seconds += at - cursor
        cursor = at
        if change.camera is not None:
            camera_on = change.camera
    if camera_on:
        on_seconds += end - cursor
    return on_seconds


def compute_attendance(record: AttendanceRecord, window: SessionWindow) -> AttendanceOutcome:
    total_seconds = sum(event_seconds(e, window) for e in record.join_events)
    on_seconds = sum(camera_on_seconds(e, window) for e in record.join_events)

    duration = window.duration_seconds
    if duration > 0:
        attendance = min(100.0, max(0.0, total_seconds / duration * 100))
    else:
        attendance = 0.0

    camera_pct = min(100.0, on_seconds / total_seconds * 100) if total_seconds > 0 else 0.0

    joined_late = False
    if record.join_events:
        first_join = min(e.join_time for e in record.join_events)
        joined_late = first_join - window.started_at >= LATE_JOIN_SECONDS

    return AttendanceOutcome(
        student_id=record.student_id,
        attendance_percentage=round(attendance, 2),
        camera_on_percentage=round(camera_pct, 2),
        camera_opened=camera_pct >= CAMERA_OPENED_THRESHOLD,
        joined_late=joined_late,
        total_time_spent=round(total_seconds / 60, 2),
        exact_attendance_percentage=attendance,
    )
