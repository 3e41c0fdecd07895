import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator

from drivingschool.auth.dependencies import get_current_user, get_storage, require_staff
from drivingschool.models.schedule import Schedule
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['schedules'])

DEFAULT_CAPACITY = 20
INSTRUCTOR_ROLES = ('instructor', 'admin')


class ScheduleCreateRequest(BaseModel):
    instructor_id: str
    title: str
    start_time: datetime
    end_time: datetime
    topic_id: str | None = None
    location: str | None = None
    capacity: int = DEFAULT_CAPACITY

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        return normalized

    @field_validator('capacity')
    @classmethod
    def validate_capacity(cls, value: int) -> int:
        if value < 1:
            raise ValueError('Capacity must be at least 1.')
        return value

    @model_validator(mode='after')
    def validate_time_range(self):
        if self.end_time <= self.start_time:
            raise ValueError('End time must be after start time.')
        return self


class ScheduleUpdateRequest(BaseModel):
    instructor_id: str | None = None
    title: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    topic_id: str | None = None
    location: str | None = None
    capacity: int | None = None

    @field_validator('capacity')
    @classmethod
    def validate_capacity(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('Capacity must be at least 1.')
        return value


class ScheduleResponse(BaseModel):
    id: str
    course_id: str
    topic_id: str | None = None
    instructor_id: str
    title: str
    start_time: datetime
    end_time: datetime
    location: str | None = None
    capacity: int
    created_at: datetime

    class Config:
        from_attributes = True


class ScheduleDetailResponse(ScheduleResponse):
    course_name: str | None = None
    topic_name: str | None = None
    instructor_name: str | None = None
    registered_count: int = 0
    is_registered: bool = False


class RegistrationResponse(BaseModel):
    id: str
    schedule_id: str
    student_id: str
    registered_at: datetime

    class Config:
        from_attributes = True


def get_schedule_or_404(storage: DatabaseStorage, schedule_id: str) -> Schedule:
    schedule = storage.get_schedule(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')
    return schedule


def validate_instructor(storage: DatabaseStorage, instructor_id: str) -> None:
    instructor = storage.get_user(instructor_id)
    if instructor is None or instructor.role not in INSTRUCTOR_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Instructor not found')


def validate_topic(storage: DatabaseStorage, topic_id: str | None, course_id: str) -> None:
    if topic_id is None:
        return
    topic = storage.get_topic(topic_id)
    if topic is None or topic.course_id != course_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Topic does not belong to this course')


def describe_schedules(storage: DatabaseStorage, schedules: list[Schedule], user: User) -> list[ScheduleDetailResponse]:
    courses = storage.get_courses_by_ids({schedule.course_id for schedule in schedules})
    topics = storage.get_topics_by_ids({schedule.topic_id for schedule in schedules if schedule.topic_id})
    instructors = storage.get_users_by_ids({schedule.instructor_id for schedule in schedules})
    counts = storage.get_registration_counts([schedule.id for schedule in schedules])
    registered = storage.get_registered_schedule_ids(user.id)

    items = []
    for schedule in schedules:
        item = ScheduleDetailResponse.model_validate(schedule)
        course = courses.get(schedule.course_id)
        topic = topics.get(schedule.topic_id)
        instructor = instructors.get(schedule.instructor_id)
        item.course_name = course.name if course else None
        item.topic_name = topic.name if topic else None
        item.instructor_name = instructor.full_name if instructor else None
        item.registered_count = counts.get(schedule.id, 0)
        item.is_registered = schedule.id in registered
        items.append(item)
    return items


@router.get('/schedules', response_model=list[ScheduleDetailResponse])
def list_schedules(current_user: User = Depends(get_current_user), storage: DatabaseStorage = Depends(get_storage)):
    if current_user.role == 'admin':
        schedules = storage.get_schedules()
    elif current_user.role == 'instructor':
        schedules = storage.get_schedules_by_instructor(current_user.id)
    else:
        schedules = storage.get_schedules_for_student(current_user.id)
    return describe_schedules(storage, schedules, current_user)


@router.post(
    '/schedules/{schedule_id}/register',
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_for_session(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    # Row lock held until the registration commits.
    schedule = storage.get_schedule_for_update(schedule_id)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found')

    enrollment = storage.get_enrollment(schedule.course_id, current_user.id)
    if enrollment is None or not enrollment.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You are not enrolled in this course')
    if schedule.start_time <= datetime.now():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='This session has already started')
    if storage.is_student_registered(schedule_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already registered for this session')
    if storage.get_session_registration_count(schedule_id) >= schedule.capacity:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Session is full')

    registration = storage.register_for_session(schedule_id, current_user.id)
    logger.info('Student %s registered for session %s', current_user.id, schedule_id)
    return registration


@router.delete('/schedules/{schedule_id}/register', status_code=status.HTTP_204_NO_CONTENT)
def unregister_from_session(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.unregister_from_session(schedule_id, current_user.id) == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Registration not found')


@router.get('/admin/courses/{course_id}/schedules', response_model=list[ScheduleDetailResponse])
def list_course_schedules(
    course_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.get_course(course_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')
    return describe_schedules(storage, storage.get_schedules_by_course(course_id), current_user)


@router.post(
    '/admin/courses/{course_id}/schedules',
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_schedule(
    course_id: str,
    data: ScheduleCreateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.get_course(course_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')
    validate_instructor(storage, data.instructor_id)
    validate_topic(storage, data.topic_id, course_id)

    schedule = storage.create_schedule(course_id=course_id, **data.model_dump())
    storage.create_audit_log(
        current_user.id, 'CREATE_SCHEDULE', 'schedule', schedule.id, {'course_id': course_id, 'title': schedule.title}
    )
    return schedule


@router.patch('/admin/schedules/{schedule_id}', response_model=ScheduleResponse)
def update_schedule(
    schedule_id: str,
    data: ScheduleUpdateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    schedule = get_schedule_or_404(storage, schedule_id)
    changes = data.model_dump(exclude_unset=True)

    for field in ('instructor_id', 'title', 'start_time', 'end_time', 'capacity'):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'{field} cannot be null')

    if 'title' in changes:
        changes['title'] = changes['title'].strip()
        if not changes['title']:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Title is required')

    start_time = changes.get('start_time', schedule.start_time)
    end_time = changes.get('end_time', schedule.end_time)
    if end_time <= start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='End time must be after start time')

    if 'capacity' in changes:
        registered = storage.get_session_registration_count(schedule_id)
        if changes['capacity'] < registered:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Capacity cannot be lower than the {registered} registered students',
            )

    if 'instructor_id' in changes:
        validate_instructor(storage, changes['instructor_id'])
    if 'topic_id' in changes:
        validate_topic(storage, changes['topic_id'], schedule.course_id)

    schedule = storage.update_schedule(schedule, changes)
    storage.create_audit_log(
        current_user.id, 'UPDATE_SCHEDULE', 'schedule', schedule.id, {'fields': sorted(changes)}
    )
    return schedule


@router.delete('/admin/schedules/{schedule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(
    schedule_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    schedule = get_schedule_or_404(storage, schedule_id)
    storage.delete_schedule(schedule)
    storage.create_audit_log(current_user.id, 'DELETE_SCHEDULE', 'schedule', schedule_id)
