from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator

from drivingschool.auth.dependencies import get_current_user, get_storage, is_staff, require_staff
from drivingschool.models.question import QUESTION_TYPES
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

router = APIRouter(tags=['questions'])

MIN_CHOICES = 2
MAX_SEARCH_RESULTS = 50


class ChoiceInput(BaseModel):
    label: str
    is_correct: bool = False

    @field_validator('label')
    @classmethod
    def validate_label(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Choice labels cannot be blank.')
        return normalized


def validate_choices(question_type: str, choices: list[ChoiceInput]) -> None:
    if len(choices) < MIN_CHOICES:
        raise ValueError(f'Questions need at least {MIN_CHOICES} choices.')

    labels = [choice.label for choice in choices]
    if len(set(labels)) != len(labels):
        raise ValueError('Choice labels must be unique.')

    correct_count = sum(1 for choice in choices if choice.is_correct)
    if question_type == 'single_choice' and correct_count != 1:
        raise ValueError('Single choice questions need exactly one correct choice.')
    if question_type == 'multiple_choice' and correct_count < 1:
        raise ValueError('Multiple choice questions need at least one correct choice.')


def _question_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in QUESTION_TYPES:
        raise ValueError('Question type must be single_choice or multiple_choice.')
    return normalized


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned = []
    for tag in tags:
        normalized = tag.strip()
        if normalized and normalized not in cleaned:
            cleaned.append(normalized)
    return cleaned


class QuestionCreateRequest(BaseModel):
    question_text: str
    explanation: str | None = None
    type: str
    choices: list[ChoiceInput]
    tags: list[str] = []
    is_archived: bool = False

    @field_validator('question_text')
    @classmethod
    def validate_question_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Question text is required.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _question_type(value)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, value: list[str]) -> list[str]:
        return _clean_tags(value)

    @model_validator(mode='after')
    def validate_question_choices(self):
        validate_choices(self.type, self.choices)
        return self


class QuestionUpdateRequest(BaseModel):
    question_text: str | None = None
    explanation: str | None = None
    type: str | None = None
    choices: list[ChoiceInput] | None = None
    tags: list[str] | None = None
    is_archived: bool | None = None

    @field_validator('question_text')
    @classmethod
    def validate_question_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Question text is required.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return None if value is None else _question_type(value)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _clean_tags(value)


class ChoiceResponse(BaseModel):
    label: str
    is_correct: bool | None = None


class QuestionResponse(BaseModel):
    id: str
    question_text: str
    explanation: str | None = None
    type: str
    choices: list[ChoiceResponse]
    tags: list[str] = []
    is_archived: bool
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator('tags', mode='before')
    @classmethod
    def default_tags(cls, value):
        return value or []


def to_question_response(question, include_answers: bool = True) -> QuestionResponse:
    response = QuestionResponse.model_validate(question)
    if not include_answers:
        response.explanation = None
        response.choices = [ChoiceResponse(label=choice.label) for choice in response.choices]
    return response


def get_question_or_404(storage: DatabaseStorage, question_id: str):
    question = storage.get_question(question_id)
    if question is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Question not found')
    return question


@router.get('/questions', response_model=list[QuestionResponse])
def list_questions(
    include_archived: bool = Query(default=True),
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    include_answers = is_staff(current_user)
    return [
        to_question_response(question, include_answers)
        for question in storage.get_questions(include_archived=include_archived and include_answers)
    ]


@router.post('/questions', response_model=QuestionResponse, status_code=status.HTTP_201_CREATED)
def create_question(
    data: QuestionCreateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    values = data.model_dump()
    question = storage.create_question(**values)
    storage.create_audit_log(current_user.id, 'CREATE_QUESTION', 'question', question.id, {'type': question.type})
    return question


@router.patch('/questions/{question_id}', response_model=QuestionResponse)
def update_question(
    question_id: str,
    data: QuestionUpdateRequest,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    question = get_question_or_404(storage, question_id)
    changes = data.model_dump(exclude_unset=True)

    if 'type' in changes or 'choices' in changes:
        question_type = changes.get('type') or question.type
        choices = data.choices if data.choices is not None else [ChoiceInput(**choice) for choice in question.choices]
        try:
            validate_choices(question_type, choices)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    for field in ('question_text', 'type', 'choices', 'is_archived'):
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'{field} cannot be null')

    question = storage.update_question(question, changes)
    storage.create_audit_log(
        current_user.id, 'UPDATE_QUESTION', 'question', question.id, {'fields': sorted(changes)}
    )
    return question


@router.delete('/questions/{question_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_question(
    question_id: str,
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    question = get_question_or_404(storage, question_id)
    storage.delete_question(question)
    storage.create_audit_log(current_user.id, 'DELETE_QUESTION', 'question', question_id)


@router.get('/admin/questions/search', response_model=list[QuestionResponse])
def search_questions(
    q: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=MAX_SEARCH_RESULTS),
    current_user: User = Depends(require_staff),
    storage: DatabaseStorage = Depends(get_storage),
):
    text = q.strip() if q else None
    tag = tag.strip() if tag else None
    return storage.search_questions(text=text or None, tag=tag or None, limit=limit)
