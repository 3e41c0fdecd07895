from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from drivingschool.routes.attendance_routes import MarkAttendanceRequest, get_attendance, mark_attendance
from drivingschool.routes.schedule_routes import (
    ScheduleCreateRequest,
    ScheduleUpdateRequest,
    create_schedule,
    list_schedules,
    register_for_session,
    unregister_from_session,
    update_schedule,
)


@pytest.fixture
def session_setup(storage, make_user, make_course, make_schedule):
    instructor = make_user(role='instructor')
    course = make_course()
    schedule = make_schedule(course, instructor, capacity=2)
    students = [make_user() for _ in range(3)]
    for student in students:
        storage.create_enrollment(course.id, student.id)
    return instructor, course, schedule, students


def test_schedule_create_request_rejects_inverted_time_range() -> None:
    start = datetime(2026, 5, 1, 10, 0)

    with pytest.raises(ValidationError):
        ScheduleCreateRequest(instructor_id='i1', title='Lesson', start_time=start, end_time=start)


def test_schedule_create_request_rejects_zero_capacity() -> None:
    start = datetime(2026, 5, 1, 10, 0)

    with pytest.raises(ValidationError):
        ScheduleCreateRequest(
            instructor_id='i1', title='Lesson', start_time=start, end_time=start + timedelta(hours=1), capacity=0
        )


def test_register_until_session_is_full(storage, session_setup) -> None:
    _, _, schedule, students = session_setup

    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)
    register_for_session(schedule_id=schedule.id, current_user=students[1], storage=storage)

    with pytest.raises(HTTPException) as exception_info:
        register_for_session(schedule_id=schedule.id, current_user=students[2], storage=storage)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Session is full'
    assert storage.get_session_registration_count(schedule.id) == 2


def test_register_twice_is_rejected(storage, session_setup) -> None:
    _, _, schedule, students = session_setup
    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)

    with pytest.raises(HTTPException) as exception_info:
        register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)

    assert exception_info.value.detail == 'Already registered for this session'


def test_register_requires_enrollment(storage, session_setup, make_user) -> None:
    _, _, schedule, _ = session_setup

    with pytest.raises(HTTPException) as exception_info:
        register_for_session(schedule_id=schedule.id, current_user=make_user(), storage=storage)

    assert exception_info.value.status_code == 403


def test_register_for_started_session_is_rejected(storage, session_setup, make_schedule) -> None:
    instructor, course, _, students = session_setup
    started = make_schedule(
        course,
        instructor,
        start_time=datetime.now() - timedelta(minutes=5),
        end_time=datetime.now() + timedelta(hours=1),
    )

    with pytest.raises(HTTPException) as exception_info:
        register_for_session(schedule_id=started.id, current_user=students[0], storage=storage)

    assert exception_info.value.detail == 'This session has already started'


def test_register_for_unknown_session_returns_not_found(storage, make_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        register_for_session(schedule_id='missing', current_user=make_user(), storage=storage)

    assert exception_info.value.status_code == 404


def test_unregister_frees_a_seat(storage, session_setup) -> None:
    _, _, schedule, students = session_setup
    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)
    register_for_session(schedule_id=schedule.id, current_user=students[1], storage=storage)

    unregister_from_session(schedule_id=schedule.id, current_user=students[0], storage=storage)
    register_for_session(schedule_id=schedule.id, current_user=students[2], storage=storage)

    with pytest.raises(HTTPException) as exception_info:
        unregister_from_session(schedule_id=schedule.id, current_user=students[0], storage=storage)
    assert exception_info.value.status_code == 404


def test_list_schedules_is_scoped_by_role(storage, session_setup, make_user, make_course, make_schedule) -> None:
    instructor, _, schedule, students = session_setup
    other_instructor = make_user(role='instructor')
    other = make_schedule(make_course(name='Commercial'), other_instructor)
    admin = make_user(role='admin')
    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)

    student_view = list_schedules(current_user=students[0], storage=storage)
    instructor_view = list_schedules(current_user=instructor, storage=storage)
    admin_view = list_schedules(current_user=admin, storage=storage)

    assert [item.id for item in student_view] == [schedule.id]
    assert student_view[0].is_registered is True
    assert student_view[0].registered_count == 1
    assert student_view[0].course_name == 'Beginner Driver Training'
    assert [item.id for item in instructor_view] == [schedule.id]
    assert {item.id for item in admin_view} == {schedule.id, other.id}


def test_create_schedule_validates_instructor(storage, make_user, make_course) -> None:
    admin = make_user(role='admin')
    student = make_user()
    course = make_course()
    start = datetime.now() + timedelta(days=3)

    with pytest.raises(HTTPException) as exception_info:
        create_schedule(
            course_id=course.id,
            data=ScheduleCreateRequest(
                instructor_id=student.id, title='Lesson', start_time=start, end_time=start + timedelta(hours=1)
            ),
            current_user=admin,
            storage=storage,
        )

    assert exception_info.value.detail == 'Instructor not found'


def test_update_schedule_cannot_shrink_below_registrations(storage, session_setup, make_user) -> None:
    _, _, schedule, students = session_setup
    admin = make_user(role='admin')
    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)
    register_for_session(schedule_id=schedule.id, current_user=students[1], storage=storage)

    with pytest.raises(HTTPException) as exception_info:
        update_schedule(schedule_id=schedule.id, data=ScheduleUpdateRequest(capacity=1), current_user=admin, storage=storage)
    assert exception_info.value.status_code == 400

    updated = update_schedule(
        schedule_id=schedule.id, data=ScheduleUpdateRequest(capacity=5), current_user=admin, storage=storage
    )
    assert updated.capacity == 5


def test_mark_attendance_upserts_for_registered_students(storage, session_setup) -> None:
    instructor, _, schedule, students = session_setup
    register_for_session(schedule_id=schedule.id, current_user=students[0], storage=storage)

    mark_attendance(
        schedule_id=schedule.id,
        data=MarkAttendanceRequest(student_id=students[0].id, status='absent'),
        current_user=instructor,
        storage=storage,
    )
    record = mark_attendance(
        schedule_id=schedule.id,
        data=MarkAttendanceRequest(student_id=students[0].id, status=' Present '),
        current_user=instructor,
        storage=storage,
    )

    assert record.status == 'present'
    assert len(storage.get_attendance_for_schedule(schedule.id)) == 1
    roster = get_attendance(schedule_id=schedule.id, current_user=instructor, storage=storage)
    assert [(entry.student_id, entry.status) for entry in roster] == [(students[0].id, 'present')]


def test_mark_attendance_rejects_unregistered_student(storage, session_setup) -> None:
    instructor, _, schedule, students = session_setup

    with pytest.raises(HTTPException) as exception_info:
        mark_attendance(
            schedule_id=schedule.id,
            data=MarkAttendanceRequest(student_id=students[0].id, status='present'),
            current_user=instructor,
            storage=storage,
        )

    assert exception_info.value.detail == 'Student is not registered for this session'


def test_other_instructor_cannot_manage_session(storage, session_setup, make_user) -> None:
    _, _, schedule, _ = session_setup

    with pytest.raises(HTTPException) as exception_info:
        get_attendance(schedule_id=schedule.id, current_user=make_user(role='instructor'), storage=storage)

    assert exception_info.value.status_code == 403
