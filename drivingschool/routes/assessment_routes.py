import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from drivingschool.auth.dependencies import (
    ensure_course_access,
    get_current_user,
    get_storage,
    require_admin,
    require_staff,
)
from drivingschool.core import config
from drivingschool.models.assessment import ASSESSMENT_MODES, ASSESSMENT_STATUSES, TopicAssessment
from drivingschool.models.user import User
from drivingschool.routes.question_routes import QuestionResponse
from drivingschool.routes.test_routes import (
    TestStartResponse,
    select_template_questions,
    start_test_instance,
    to_start_response,
)
from drivingschool.services import grading
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['assessments'])


def _choice(value: str, allowed: tuple[str, ...], label: str) -> str:
    normalized = value.strip().lower()
    if normalized not in allowed:
        raise ValueError(f'{label} must be one of: {", ".join(allowed)}.')
    return normalized


def _positive(value: int | None, label: str) -> int | None:
    if value is not None and value < 1:
        raise ValueError(f'{label} must be at least 1.')
    return value


class AssessmentCreateRequest(BaseModel):
    name: str
    description: str | None = None
    mode: str
    question_count: int | None = None
    randomize_questions: bool = False
    passing_percentage: int = 70
    max_attempts: int = 3
    time_limit: int | None = None
    test_template_id: str | None = None
    is_required: bool = False
    status: str = 'draft'
    order_index: int | None = None
    question_ids: list[str] | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Assessment name is required.')
        return normalized

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, value: str) -> str:
        return _choice(value, ASSESSMENT_MODES, 'Mode')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _choice(value, ASSESSMENT_STATUSES, 'Status')

    @field_validator('passing_percentage')
    @classmethod
    def validate_passing_percentage(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError('Passing percentage must be between 0 and 100.')
        return value

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, value: int) -> int:
        return _positive(value, 'Maximum attempts')

    @field_validator('time_limit')
    @classmethod
    def validate_time_limit(cls, value: int | None) -> int | None:
        return _positive(value, 'Time limit')


class AssessmentUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    mode: str | None = None
    question_count: int | None = None
    randomize_questions: bool | None = None
    passing_percentage: int | None = None
    max_attempts: int | None = None
    time_limit: int | None = None
    test_template_id: str | None = None
    is_required: bool | None = None
    status: str | None = None
    order_index: int | None = None
    question_ids: list[str] | None = None

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, value: str | None) -> str | None:
        return None if value is None else _choice(value, ASSESSMENT_MODES, 'Mode')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return None if value is None else _choice(value, ASSESSMENT_STATUSES, 'Status')

    @field_validator('passing_percentage')
    @classmethod
    def validate_passing_percentage(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 100:
            raise ValueError('Passing percentage must be between 0 and 100.')
        return value

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, value: int | None) -> int | None:
        return _positive(value, 'Maximum attempts')

    @field_validator('time_limit')
    @classmethod
    def validate_time_limit(cls, value: int | None) -> int | None:
        return _positive(value, 'Time limit')


class AssessmentQuestionRequest(BaseModel):
    question_id: str
    order_index: int | None = None


class QuestionOrder(BaseModel):
    question_id: str
    order_index: int


class ReorderAssessmentQuestionsRequest(BaseModel):
    question_orders: list[QuestionOrder]


class TopicAssessmentResponse(BaseModel):
    id: str
    topic_id: str
    name: str
    description: str | None = None
    mode: str
    question_count: int | None = None
    randomize_questions: bool
    passing_percentage: int
    max_attempts: int
    time_limit: int | None = None
    test_template_id: str | None = None
    is_required: bool
    status: str
    order_index: int
    created_at: datetime

    class Config:
        from_attributes = True


class AssessmentQuestionResponse(BaseModel):
    id: str
    question_id: str
    order_index: int
    question: QuestionResponse


def get_assessment_or_404(storage: DatabaseStorage, assessment_id: str) -> TopicAssessment:
    assessment = storage.get_topic_assessment(assessment_id)
    if assessment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Assessment not found')
    return assessment


def validate_assessment_config(
    storage: DatabaseStorage,
    mode: str,
    question_count: int | None,
    test_template_id: str | None,
    question_ids: list[str] | None,
) -> None:
    if mode == 'random' and (question_count is None or question_count < 1):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Random assessments need a positive question count',
        )
    if mode == 'manual' and not question_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Manual assessments need at least one question',
        )
    if mode == 'linked_template':
        if not test_template_id or storage.get_test_template(test_template_id) is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Linked assessments need an existing test template',
            )
    if question_ids:
        if len(set(question_ids)) != len(question_ids):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Question ids must be unique')
        if len(storage.get_questions_by_ids(question_ids)) != len(question_ids):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='One or more questions do not exist')


def select_assessment_questions(storage: DatabaseStorage, assessment: TopicAssessment) -> tuple[list, str | None]:
    """Return the questions to serve and the template id to record on the attempt."""
    if assessment.mode == 'random':
        count = assessment.question_count or config.DEFAULT_RANDOM_QUESTION_COUNT
        return grading.select_random_questions(storage.get_active_questions(), count), None

    if assessment.mode == 'manual':
        questions = [question for _, question in storage.get_assessment_questions(assessment.id)]
        if assessment.randomize_questions:
            questions = grading.shuffle_questions(questions)
        return questions, None

    template = storage.get_test_template(assessment.test_template_id) if assessment.test_template_id else None
    if template is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Linked test template no longer exists')
    return select_template_questions(storage, template), template.id


def to_assessment_question_responses(storage: DatabaseStorage, assessment_id: str) -> list[AssessmentQuestionResponse]:
    return [
        AssessmentQuestionResponse(
            id=link.id,
            question_id=question.id,
            order_index=link.order_index,
            question=QuestionResponse.model_validate(question),
        )
        for link, question in storage.get_assessment_questions(assessment_id)
    ]


@router.get('/admin/topics/{topic_id}/assessments', response_model=list[TopicAssessmentResponse])
def list_topic_assessments(
    topic_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.get_topic(topic_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Topic not found')
    return storage.get_topic_assessments(topic_id)


@router.post(
    '/admin/topics/{topic_id}/assessments',
    response_model=TopicAssessmentResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_topic_assessment(
    topic_id: str,
    data: AssessmentCreateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.get_topic(topic_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Topic not found')

    validate_assessment_config(storage, data.mode, data.question_count, data.test_template_id, data.question_ids)

    values = data.model_dump(exclude={'question_ids'})
    if values['order_index'] is None:
        values['order_index'] = len(storage.get_topic_assessments(topic_id))
    assessment = storage.create_topic_assessment(question_ids=data.question_ids, topic_id=topic_id, **values)
    storage.create_audit_log(
        current_user.id, 'CREATE_ASSESSMENT', 'topic_assessment', assessment.id, {'name': assessment.name}
    )
    return assessment


@router.patch('/admin/assessments/{assessment_id}', response_model=TopicAssessmentResponse)
def update_topic_assessment(
    assessment_id: str,
    data: AssessmentUpdateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    assessment = get_assessment_or_404(storage, assessment_id)
    changes = data.model_dump(exclude_unset=True)
    question_ids = changes.pop('question_ids', None)

    if changes.get('name') is not None:
        changes['name'] = changes['name'].strip()
        if not changes['name']:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Assessment name is required')

    mode = changes.get('mode') or assessment.mode
    effective_question_ids = question_ids
    if effective_question_ids is None and mode == 'manual':
        effective_question_ids = [question.id for _, question in storage.get_assessment_questions(assessment.id)]
    validate_assessment_config(
        storage,
        mode,
        changes['question_count'] if 'question_count' in changes else assessment.question_count,
        changes['test_template_id'] if 'test_template_id' in changes else assessment.test_template_id,
        effective_question_ids,
    )

    assessment = storage.update_topic_assessment(assessment, changes)
    if question_ids is not None:
        storage.set_assessment_questions(assessment.id, question_ids)
    storage.create_audit_log(
        current_user.id,
        'UPDATE_ASSESSMENT',
        'topic_assessment',
        assessment.id,
        {'fields': sorted(changes) + (['question_ids'] if question_ids is not None else [])},
    )
    return assessment


@router.delete('/admin/assessments/{assessment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_topic_assessment(
    assessment_id: str,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    assessment = get_assessment_or_404(storage, assessment_id)
    storage.delete_topic_assessment(assessment)
    storage.create_audit_log(current_user.id, 'DELETE_ASSESSMENT', 'topic_assessment', assessment_id)


@router.get('/admin/assessments/{assessment_id}/question-ids')
def get_assessment_question_ids(
    assessment_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_assessment_or_404(storage, assessment_id)
    return {'question_ids': [question.id for _, question in storage.get_assessment_questions(assessment_id)]}


@router.get('/admin/assessments/{assessment_id}/questions', response_model=list[AssessmentQuestionResponse])
def list_assessment_questions(
    assessment_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_assessment_or_404(storage, assessment_id)
    return to_assessment_question_responses(storage, assessment_id)


@router.post(
    '/admin/assessments/{assessment_id}/questions',
    response_model=list[AssessmentQuestionResponse],
    status_code=status.HTTP_201_CREATED,
)
def add_assessment_question(
    assessment_id: str,
    data: AssessmentQuestionRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_assessment_or_404(storage, assessment_id)
    if storage.get_question(data.question_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Question not found')
    if any(question.id == data.question_id for _, question in storage.get_assessment_questions(assessment_id)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Question is already part of this assessment')

    storage.add_question_to_assessment(assessment_id, data.question_id, data.order_index)
    return to_assessment_question_responses(storage, assessment_id)


@router.delete('/admin/assessments/{assessment_id}/questions/{question_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_assessment_question(
    assessment_id: str,
    question_id: str,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_assessment_or_404(storage, assessment_id)
    if storage.remove_question_from_assessment(assessment_id, question_id) == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Question is not part of this assessment')


@router.put('/admin/assessments/{assessment_id}/questions/reorder', response_model=list[AssessmentQuestionResponse])
def reorder_assessment_questions(
    assessment_id: str,
    data: ReorderAssessmentQuestionsRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    get_assessment_or_404(storage, assessment_id)
    storage.reorder_assessment_questions(
        assessment_id, {item.question_id: item.order_index for item in data.question_orders}
    )
    return to_assessment_question_responses(storage, assessment_id)


@router.post('/assessments/{assessment_id}/start', response_model=TestStartResponse)
def start_assessment(
    assessment_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    assessment = get_assessment_or_404(storage, assessment_id)
    topic = storage.get_topic(assessment.topic_id)
    if topic is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Topic not found')

    ensure_course_access(storage, topic.course_id, current_user)

    if assessment.status != 'published':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Assessment is not published')
    if storage.count_submitted_attempts(assessment.id, current_user.id) >= assessment.max_attempts:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Maximum attempts reached')

    open_attempt = storage.get_open_assessment_attempt(assessment.id, current_user.id)
    if open_attempt is not None:
        logger.info('Student %s resumed test instance %s', current_user.id, open_attempt.id)
        return to_start_response(open_attempt, assessment.time_limit)

    questions, template_id = select_assessment_questions(storage, assessment)
    return start_test_instance(
        storage,
        current_user,
        questions,
        test_template_id=template_id,
        topic_assessment_id=assessment.id,
        time_limit=assessment.time_limit,
    )
