import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator

from drivingschool.auth.dependencies import (
    ensure_course_access,
    get_current_user,
    get_storage,
    require_admin,
    require_staff,
)
from drivingschool.models.course import TOPIC_TYPES
from drivingschool.models.user import User
from drivingschool.routes.assessment_routes import TopicAssessmentResponse
from drivingschool.routes.payment_routes import PaymentResponse
from drivingschool.storage import REORDER_DIRECTIONS, DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['courses'])

PROGRESS_COMPLETED = 100
PROGRESS_ENROLLED = 50


def _required_text(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{label} is required.')
    return normalized


def _topic_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TOPIC_TYPES:
        raise ValueError('Topic type must be theory or practice.')
    return normalized


class CourseCreateRequest(BaseModel):
    name: str
    description: str | None = None
    category: str | None = None
    price: Decimal | None = None
    is_active: bool = True

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_text(value, 'Course name')

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value < 0:
            raise ValueError('Price cannot be negative.')
        return value


class CourseUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    price: Decimal | None = None
    is_active: bool | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, 'Course name')

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value < 0:
            raise ValueError('Price cannot be negative.')
        return value


class TopicCreateRequest(BaseModel):
    course_id: str
    name: str
    description: str | None = None
    type: str = 'theory'
    order_index: int | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_text(value, 'Topic name')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _topic_type(value)


class TopicUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    type: str | None = None
    order_index: int | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, 'Topic name')

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return None if value is None else _topic_type(value)


class PostCreateRequest(BaseModel):
    topic_id: str
    title: str
    content: str
    order_index: int | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _required_text(value, 'Post title')


class PostUpdateRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    order_index: int | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value, 'Post title')


class ReorderRequest(BaseModel):
    direction: str


class CompletionTestRequest(BaseModel):
    test_template_id: str
    min_score: int | None = None

    @field_validator('min_score')
    @classmethod
    def validate_min_score(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 100:
            raise ValueError('Minimum score must be between 0 and 100.')
        return value


class CourseResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    category: str | None = None
    price: float | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnrollmentResponse(BaseModel):
    id: str
    course_id: str
    student_id: str
    enrolled_at: datetime
    completed_at: datetime | None = None
    is_active: bool

    class Config:
        from_attributes = True


class CourseListItemResponse(CourseResponse):
    schedule_count: int = 0
    enrollment: EnrollmentResponse | None = None
    payment: PaymentResponse | None = None
    progress: int = 0


class AdminCourseResponse(CourseResponse):
    schedule_count: int = 0


class TopicResponse(BaseModel):
    id: str
    course_id: str
    name: str
    description: str | None = None
    type: str
    order_index: int
    created_at: datetime

    class Config:
        from_attributes = True


class PostResponse(BaseModel):
    id: str
    topic_id: str
    title: str
    content: str
    order_index: int
    created_at: datetime

    class Config:
        from_attributes = True


class TopicContentResponse(TopicResponse):
    posts: list[PostResponse] = []
    assessments: list[TopicAssessmentResponse] = []


class CourseContentResponse(BaseModel):
    course: CourseResponse
    topics: list[TopicContentResponse]


class CompletionTestResponse(BaseModel):
    id: str
    course_id: str
    test_template_id: str
    min_score: int | None = None
    test_template_name: str | None = None

    class Config:
        from_attributes = True


class EnrolledStudentResponse(BaseModel):
    enrollment: EnrollmentResponse
    student_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


def course_progress(enrollment) -> int:
    if enrollment is None:
        return 0
    if enrollment.completed_at is not None:
        return PROGRESS_COMPLETED
    return PROGRESS_ENROLLED


def get_course_or_404(storage: DatabaseStorage, course_id: str):
    course = storage.get_course(course_id)
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')
    return course


def get_topic_or_404(storage: DatabaseStorage, topic_id: str):
    topic = storage.get_topic(topic_id)
    if topic is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Topic not found')
    return topic


def get_post_or_404(storage: DatabaseStorage, post_id: str):
    post = storage.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Post not found')
    return post


def validate_direction(direction: str) -> str:
    normalized = direction.strip().lower()
    if normalized not in REORDER_DIRECTIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Direction must be up or down')
    return normalized


def build_course_content(storage: DatabaseStorage, course_id: str, published_only: bool) -> CourseContentResponse:
    content = storage.get_course_with_content(course_id, published_only=published_only)
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Course not found')

    topics = []
    for entry in content['topics']:
        topic = TopicContentResponse.model_validate(entry['topic'])
        topic.posts = [PostResponse.model_validate(post) for post in entry['posts']]
        topic.assessments = [TopicAssessmentResponse.model_validate(item) for item in entry['assessments']]
        topics.append(topic)

    return CourseContentResponse(course=CourseResponse.model_validate(content['course']), topics=topics)


# Student-facing


@router.get('/courses', response_model=list[CourseListItemResponse])
def list_courses(current_user: User = Depends(get_current_user), storage: DatabaseStorage = Depends(get_storage)):
    enrollments = {enrollment.course_id: enrollment for enrollment in storage.get_enrollments_by_student(current_user.id)}

    latest_payments = {}
    for payment in storage.get_payments_by_student(current_user.id):
        latest_payments.setdefault(payment.course_id, payment)

    items = []
    for course, schedule_count in storage.get_courses_with_schedule_count(active_only=True):
        enrollment = enrollments.get(course.id)
        payment = latest_payments.get(course.id)
        item = CourseListItemResponse.model_validate(course)
        item.schedule_count = schedule_count
        item.enrollment = EnrollmentResponse.model_validate(enrollment) if enrollment else None
        item.payment = PaymentResponse.model_validate(payment) if payment else None
        item.progress = course_progress(enrollment)
        items.append(item)
    return items


@router.post('/courses/{course_id}/enroll', response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
def enroll_in_course(
    course_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    course = get_course_or_404(storage, course_id)
    if not course.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Course is not available for enrollment')
    if storage.get_enrollment(course_id, current_user.id) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Already enrolled in this course')

    enrollment = storage.create_enrollment(course_id, current_user.id)
    logger.info('Student %s enrolled in course %s', current_user.id, course_id)
    return enrollment


@router.get('/courses/{course_id}', response_model=CourseContentResponse)
def get_course_detail(
    course_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_course_or_404(storage, course_id)
    ensure_course_access(storage, course_id, current_user)
    return build_course_content(storage, course_id, published_only=True)


@router.get('/topics', response_model=list[TopicResponse])
def list_topics(
    course_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not course_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='course_id is required')
    return storage.get_topics_by_course(course_id)


@router.get('/posts', response_model=list[PostResponse])
def list_posts(
    topic_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    if not topic_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='topic_id is required')
    return storage.get_posts_by_topic(topic_id)


# Administration


@router.get('/courses/{course_id}/content', response_model=CourseContentResponse)
def get_course_content(
    course_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    return build_course_content(storage, course_id, published_only=False)


@router.get('/admin/courses', response_model=list[AdminCourseResponse])
def list_admin_courses(current_user: User = Depends(require_staff), storage: DatabaseStorage = Depends(get_storage)):
    items = []
    for course, schedule_count in storage.get_courses_with_schedule_count():
        item = AdminCourseResponse.model_validate(course)
        item.schedule_count = schedule_count
        items.append(item)
    return items


@router.post('/admin/courses', response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    data: CourseCreateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    course = storage.create_course(**data.model_dump())
    storage.create_audit_log(current_user.id, 'CREATE_COURSE', 'course', course.id, {'name': course.name})
    return course


@router.patch('/admin/courses/{course_id}', response_model=CourseResponse)
def update_course(
    course_id: str,
    data: CourseUpdateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    course = get_course_or_404(storage, course_id)
    changes = data.model_dump(exclude_unset=True)
    course = storage.update_course(course, changes)
    storage.create_audit_log(
        current_user.id, 'UPDATE_COURSE', 'course', course.id, {'fields': sorted(changes)}
    )
    return course


@router.delete('/admin/courses/{course_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_course(
    course_id: str,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    course = get_course_or_404(storage, course_id)
    if storage.course_has_billing_records(course_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Course has payments or certificates and cannot be deleted',
        )
    name = course.name
    storage.delete_course(course)
    storage.create_audit_log(current_user.id, 'DELETE_COURSE', 'course', course_id, {'name': name})


@router.post('/admin/topics', response_model=TopicResponse, status_code=status.HTTP_201_CREATED)
def create_topic(
    data: TopicCreateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_course_or_404(storage, data.course_id)
    values = data.model_dump()
    if values['order_index'] is None:
        values['order_index'] = len(storage.get_topics_by_course(data.course_id))
    return storage.create_topic(**values)


@router.patch('/admin/topics/{topic_id}', response_model=TopicResponse)
def update_topic(
    topic_id: str,
    data: TopicUpdateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    topic = get_topic_or_404(storage, topic_id)
    return storage.update_topic(topic, data.model_dump(exclude_unset=True))


@router.delete('/admin/topics/{topic_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_topic(
    topic_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    storage.delete_topic(get_topic_or_404(storage, topic_id))


@router.post('/admin/topics/{topic_id}/reorder', response_model=list[TopicResponse])
def reorder_topic(
    topic_id: str,
    data: ReorderRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    direction = validate_direction(data.direction)
    topic = get_topic_or_404(storage, topic_id)
    storage.reorder_topic(topic, direction)
    return storage.get_topics_by_course(topic.course_id)


@router.post('/admin/posts', response_model=PostResponse, status_code=status.HTTP_201_CREATED)
def create_post(
    data: PostCreateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_topic_or_404(storage, data.topic_id)
    values = data.model_dump()
    if values['order_index'] is None:
        values['order_index'] = len(storage.get_posts_by_topic(data.topic_id))
    return storage.create_post(**values)


@router.patch('/admin/posts/{post_id}', response_model=PostResponse)
def update_post(
    post_id: str,
    data: PostUpdateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    post = get_post_or_404(storage, post_id)
    return storage.update_post(post, data.model_dump(exclude_unset=True))


@router.delete('/admin/posts/{post_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    post_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    storage.delete_post(get_post_or_404(storage, post_id))


@router.post('/admin/posts/{post_id}/reorder', response_model=list[PostResponse])
def reorder_post(
    post_id: str,
    data: ReorderRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    direction = validate_direction(data.direction)
    post = get_post_or_404(storage, post_id)
    storage.reorder_post(post, direction)
    return storage.get_posts_by_topic(post.topic_id)


@router.get('/admin/courses/{course_id}/completion-tests', response_model=list[CompletionTestResponse])
def list_completion_tests(
    course_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_course_or_404(storage, course_id)
    items = []
    for completion_test in storage.get_completion_tests(course_id):
        item = CompletionTestResponse.model_validate(completion_test)
        template = storage.get_test_template(completion_test.test_template_id)
        item.test_template_name = template.name if template else None
        items.append(item)
    return items


@router.post(
    '/admin/courses/{course_id}/completion-tests',
    response_model=CompletionTestResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_completion_test(
    course_id: str,
    data: CompletionTestRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_course_or_404(storage, course_id)
    template = storage.get_test_template(data.test_template_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Test template not found')
    if any(link.test_template_id == template.id for link in storage.get_completion_tests(course_id)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Test is already required for this course')

    completion_test = storage.add_completion_test(course_id, template.id, data.min_score)
    item = CompletionTestResponse.model_validate(completion_test)
    item.test_template_name = template.name
    return item


@router.delete('/admin/completion-tests/{completion_test_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_completion_test(
    completion_test_id: str,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    completion_test = storage.get_completion_test(completion_test_id)
    if completion_test is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Completion test not found')
    storage.remove_completion_test(completion_test)


@router.get('/admin/courses/{course_id}/enrolled-students', response_model=list[EnrolledStudentResponse])
def list_enrolled_students(
    course_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_course_or_404(storage, course_id)
    return [
        EnrolledStudentResponse(
            enrollment=EnrollmentResponse.model_validate(enrollment),
            student_id=student.id,
            email=student.email,
            first_name=student.first_name,
            last_name=student.last_name,
        )
        for enrollment, student in storage.get_enrolled_students(course_id)
    ]
