"""Live-session attendance reports.

The live-session provider posts one report per finished session: the
session's actual start/end and, per participant, their join events and
camera/microphone timeline.  Each record becomes an attendance signal on
the student's progress for the live-session item.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator

from coursetrack.api.dependencies import (
    Catalog,
    Enrollments,
    Notifications,
    http_error,
    require_any_role,
)
from coursetrack.core.errors import ProgressEngineError
from coursetrack.models.attendance import (
    AttendanceRecord,
    JoinEvent,
    SessionWindow,
    StatusChange,
)
from coursetrack.models.principal import Principal
from coursetrack.services import progress_service

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


class StatusChangeIn(BaseModel):
    at: int
    camera: bool | None = None
    microphone: bool | None = None


class JoinEventIn(BaseModel):
    join_time: int
    leave_time: int | None = None
    camera_on_at_join: bool | None = None
    microphone_on_at_join: bool | None = None
    timeline: list[StatusChangeIn] = []


class AttendanceRecordIn(BaseModel):
    student_id: str
    join_events: list[JoinEventIn] = []


class AttendanceReportIn(BaseModel):
    course_id: UUID
    content_id: UUID
    started_at: int
    ended_at: int
    records: list[AttendanceRecordIn] = []

    @model_validator(mode="after")
    def _window_is_ordered(self) -> AttendanceReportIn:
        if self.ended_at < self.started_at:
            raise ValueError("ended_at must not be before started_at")
        return self


class AttendanceOutcomeOut(BaseModel):
    student_id: str
    attendance_percentage: float
    camera_on_percentage: float
    camera_opened: bool
    joined_late: bool
    total_time_spent: float


class AttendanceReportOut(BaseModel):
    outcomes: list[AttendanceOutcomeOut]
    not_enrolled: list[str]
    absent: list[str]


def _record(r: AttendanceRecordIn) -> AttendanceRecord:
    return AttendanceRecord(
        student_id=r.student_id,
        join_events=tuple(
            JoinEvent(
                join_time=j.join_time,
                leave_time=j.leave_time,
                camera_on_at_join=j.camera_on_at_join,
                microphone_on_at_join=j.microphone_on_at_join,
                timeline=tuple(
                    StatusChange(at=s.at, camera=s.camera, microphone=s.microphone)
                    for s in j.timeline
                ),
            )
            for j in r.join_events
        ),
    )


@router.post("/attendance", response_model=AttendanceReportOut)
async def submit_attendance_report(
    body: AttendanceReportIn,
    _principal: Annotated[
        Principal, Depends(require_any_role({"admin", "live_session_provider"}))
    ],
    catalog: Catalog,
    enrollments: Enrollments,
    outbox: Notifications,
) -> AttendanceReportOut:
    try:
        result = await progress_service.process_session_report(
            catalog,
            enrollments,
            body.course_id,
            body.content_id,
            SessionWindow(started_at=body.started_at, ended_at=body.ended_at),
            [_record(r) for r in body.records],
            outbox=outbox,
        )
    except ProgressEngineError as e:
        raise http_error(e) from None
    return AttendanceReportOut(
        outcomes=[
            AttendanceOutcomeOut(
                student_id=o.student_id,
                attendance_percentage=o.attendance_percentage,
                camera_on_percentage=o.camera_on_percentage,
                camera_opened=o.camera_opened,
                joined_late=o.joined_late,
                total_time_spent=o.total_time_spent,
            )
            for o in result.outcomes
        ],
        not_enrolled=list(result.not_enrolled),
        absent=list(result.absent),
    )
