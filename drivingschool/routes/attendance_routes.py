from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from drivingschool.auth.dependencies import get_storage, require_staff
from drivingschool.models.schedule import ATTENDANCE_STATUSES, Schedule
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

router = APIRouter(tags=['attendance'])


class MarkAttendanceRequest(BaseModel):
    student_id: str
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ATTENDANCE_STATUSES:
            raise ValueError('Status must be present or absent.')
        return normalized


class AttendanceRosterEntry(BaseModel):
    student_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    registered_at: datetime
    status: str | None = None
    marked_at: datetime | None = None
    marked_by: str | None = None


class AttendanceResponse(BaseModel):
    id: str
    schedule_id: str
    student_id: str
    status: str
    marked_at: datetime
    marked_by: str | None = None

    class Config:
        from_attributes = True


def get_managed_schedule(storage: DatabaseStorage, schedule_id: str, user: User) -> Schedule:
    schedule = storage.get_schedule(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')
    if user.role != 'admin' and schedule.instructor_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You can only manage your own sessions')
    return schedule


@router.get('/instructor/schedules/{schedule_id}/attendance', response_model=list[AttendanceRosterEntry])
def get_attendance(
    schedule_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_managed_schedule(storage, schedule_id, current_user)
    records = {record.student_id: record for record in storage.get_attendance_for_schedule(schedule_id)}

    roster = []
    for registration, student in storage.get_session_registrations(schedule_id):
        record = records.get(student.id)
        roster.append(
            AttendanceRosterEntry(
                student_id=student.id,
                email=student.email,
                first_name=student.first_name,
                last_name=student.last_name,
                registered_at=registration.registered_at,
                status=record.status if record else None,
                marked_at=record.marked_at if record else None,
                marked_by=record.marked_by if record else None,
            )
        )
    return roster


@router.post('/instructor/schedules/{schedule_id}/attendance', response_model=AttendanceResponse)
def mark_attendance(
    schedule_id: str,
    data: MarkAttendanceRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_managed_schedule(storage, schedule_id, current_user)
    if not storage.is_student_registered(schedule_id, data.student_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Student is not registered for this session',
        )
    return storage.mark_attendance(schedule_id, data.student_id, data.status, current_user.id)
