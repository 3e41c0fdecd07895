import logging
from collections import Counter
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, field_validator

from drivingschool.auth.dependencies import get_storage, require_admin
from drivingschool.models.user import ROLES, User
from drivingschool.routes.auth_routes import UserResponse
from drivingschool.routes.course_routes import CourseResponse, EnrollmentResponse
from drivingschool.services.exports import build_students_csv, build_test_results_csv
from drivingschool.services.grading import round_half_up_percentage
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['admin'])

STATS_MONTHS = 12
PASS_RATE_COURSES = 5
PASS_RATE_LABEL_LENGTH = 15
AUDIT_LOG_LIMIT = 100


class AdminUserUpdateRequest(BaseModel):
    role: str | None = None
    is_active: bool | None = None
    first_name: str | None = None
    last_name: str | None = None

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError('Role must be student, instructor or admin.')
        return normalized

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()


class AdminEnrollmentUpdateRequest(BaseModel):
    is_active: bool | None = None
    completed_at: datetime | None = None


class MonthlyEnrollmentCount(BaseModel):
    month: str
    count: int


class CoursePassRate(BaseModel):
    course: str
    rate: int


class AdminStatsResponse(BaseModel):
    total_students: int
    active_students: int
    total_instructors: int
    total_courses: int
    active_courses: int
    total_tests: int
    passed_tests: int
    total_certificates: int
    revenue_total: float
    monthly_enrollments: list[MonthlyEnrollmentCount]
    test_pass_rates: list[CoursePassRate]


class EnrollmentDetailResponse(EnrollmentResponse):
    course: CourseResponse
    student: UserResponse | None = None


class AuditLogResponse(BaseModel):
    id: str
    user_id: str | None = None
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    details: dict | None = None
    created_at: datetime

    class Config:
        from_attributes = True


def last_months(today: date, count: int = STATS_MONTHS) -> list[tuple[int, int]]:
    """Return (year, month) pairs for the last `count` months, oldest first."""
    months = []
    for offset in range(count - 1, -1, -1):
        index = today.year * 12 + (today.month - 1) - offset
        months.append((index // 12, index % 12 + 1))
    return months


def monthly_enrollment_counts(enrollments: list, today: date) -> list[MonthlyEnrollmentCount]:
    counts = Counter((enrollment.enrolled_at.year, enrollment.enrolled_at.month) for enrollment in enrollments)
    return [
        MonthlyEnrollmentCount(month=date(year, month, 1).strftime('%b %y'), count=counts.get((year, month), 0))
        for year, month in last_months(today)
    ]


def course_pass_rates(storage: DatabaseStorage, courses: list, instances: list) -> list[CoursePassRate]:
    rates = []
    for course in courses[:PASS_RATE_COURSES]:
        template_ids = {template.id for template in storage.get_test_templates_by_course(course.id)}
        course_instances = [
            instance for instance in instances
            if instance.test_template_id in template_ids and instance.submitted_at is not None
        ]
        passed = sum(1 for instance in course_instances if instance.passed)
        rates.append(
            CoursePassRate(
                course=course.name[:PASS_RATE_LABEL_LENGTH],
                rate=round_half_up_percentage(passed, len(course_instances)),
            )
        )
    return rates


@router.get('/admin/stats', response_model=AdminStatsResponse)
def get_admin_stats(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    users = storage.get_all_users()
    students = [user for user in users if user.role == 'student']
    student_ids = {student.id for student in students}
    courses = storage.get_courses()

    instances = [i for i in storage.get_submitted_test_instances() if i.student_id in student_ids]
    certificates = [c for c in storage.get_all_certificates() if c.student_id in student_ids]
    payments = [p for p in storage.get_all_payments() if p.student_id in student_ids]
    enrollments = [e for e in storage.get_all_enrollments() if e.student_id in student_ids]

    return AdminStatsResponse(
        total_students=len(students),
        active_students=sum(1 for student in students if student.is_active),
        total_instructors=sum(1 for user in users if user.role == 'instructor'),
        total_courses=len(courses),
        active_courses=sum(1 for course in courses if course.is_active),
        total_tests=len(instances),
        passed_tests=sum(1 for instance in instances if instance.passed),
        total_certificates=len(certificates),
        revenue_total=float(sum(payment.amount for payment in payments if payment.status == 'paid')),
        monthly_enrollments=monthly_enrollment_counts(enrollments, date.today()),
        test_pass_rates=course_pass_rates(storage, courses, instances),
    )


@router.get('/admin/users', response_model=list[UserResponse])
def list_users(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    return storage.get_all_users()


@router.patch('/admin/users/{user_id}', response_model=UserResponse)
def update_user(
    user_id: str,
    data: AdminUserUpdateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    user = storage.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

    changes = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No changes supplied')
    if user.id == current_user.id and (changes.get('role', user.role) != 'admin' or changes.get('is_active') is False):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='You cannot remove your own admin access',
        )

    previous = {key: getattr(user, key) for key in changes}
    user = storage.update_user(user, changes)
    storage.create_audit_log(
        current_user.id,
        'UPDATE_USER',
        'user',
        user.id,
        {'changes': {key: {'from': previous[key], 'to': value} for key, value in changes.items()}},
    )
    logger.info('Admin %s updated user %s: %s', current_user.id, user.id, sorted(changes))
    return user


@router.get('/admin/users/{user_id}/enrollments', response_model=list[EnrollmentDetailResponse])
def list_user_enrollments(
    user_id: str,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    student = storage.get_user(user_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')

    items = []
    for enrollment, course in storage.get_enrollments_with_course_details(user_id):
        item = EnrollmentDetailResponse.model_validate(
            {**EnrollmentResponse.model_validate(enrollment).model_dump(), 'course': CourseResponse.model_validate(course)}
        )
        items.append(item)
    return items


@router.get('/admin/enrollments', response_model=list[EnrollmentDetailResponse])
def list_enrollments(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    return [
        EnrollmentDetailResponse.model_validate(
            {
                **EnrollmentResponse.model_validate(enrollment).model_dump(),
                'course': CourseResponse.model_validate(course),
                'student': UserResponse.model_validate(student),
            }
        )
        for enrollment, course, student in storage.get_all_enrollments_with_details()
    ]


@router.patch('/admin/enrollments/{enrollment_id}', response_model=EnrollmentResponse)
def update_enrollment(
    enrollment_id: str,
    data: AdminEnrollmentUpdateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    enrollment = storage.get_enrollment_by_id(enrollment_id)
    if enrollment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Enrollment not found')

    changes = data.model_dump(exclude_unset=True)
    if changes.get('is_active', True) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='is_active cannot be null')

    enrollment = storage.update_enrollment(enrollment, changes)
    storage.create_audit_log(
        current_user.id, 'UPDATE_ENROLLMENT', 'enrollment', enrollment.id, {'fields': sorted(changes)}
    )
    return enrollment


def csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


@router.get('/admin/export/students')
def export_students(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    students = [user for user in storage.get_all_users() if user.role == 'student']
    enrollment_counts = Counter(enrollment.student_id for enrollment in storage.get_all_enrollments())
    return csv_response(build_students_csv(students, enrollment_counts), 'students.csv')


@router.get('/admin/export/test-results')
def export_test_results(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    instances = storage.get_submitted_test_instances()
    users = storage.get_users_by_ids({instance.student_id for instance in instances})
    template_names = {template.id: template.name for template in storage.get_test_templates()}
    assessment_names = {}
    for instance in instances:
        if instance.topic_assessment_id and instance.topic_assessment_id not in assessment_names:
            assessment = storage.get_topic_assessment(instance.topic_assessment_id)
            assessment_names[instance.topic_assessment_id] = assessment.name if assessment else ''
    return csv_response(
        build_test_results_csv(instances, users, template_names, assessment_names),
        'test-results.csv',
    )


@router.get('/admin/audit-logs', response_model=list[AuditLogResponse])
def list_audit_logs(
    limit: int = Query(default=AUDIT_LOG_LIMIT, ge=1, le=AUDIT_LOG_LIMIT),
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    return storage.get_audit_logs(limit=limit)
