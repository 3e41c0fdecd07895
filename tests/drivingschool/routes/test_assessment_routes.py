from datetime import datetime

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from drivingschool.routes.assessment_routes import (
    AssessmentCreateRequest,
    AssessmentUpdateRequest,
    QuestionOrder,
    ReorderAssessmentQuestionsRequest,
    create_topic_assessment,
    list_assessment_questions,
    reorder_assessment_questions,
    start_assessment,
    update_topic_assessment,
)
from drivingschool.routes.test_routes import SubmitTestRequest, submit_test
from drivingschool.services import grading


@pytest.fixture
def topic(storage, make_course):
    course = make_course()
    return storage.create_topic(course_id=course.id, name='Road Signs')


@pytest.fixture
def enrolled_student(storage, make_user, topic):
    student = make_user()
    storage.create_enrollment(topic.course_id, student.id)
    return student


def test_assessment_request_validates_mode_and_attempts() -> None:
    with pytest.raises(ValidationError):
        AssessmentCreateRequest(name='Quiz', mode='oral')
    with pytest.raises(ValidationError):
        AssessmentCreateRequest(name='Quiz', mode='random', question_count=2, max_attempts=0)


def test_create_manual_assessment_links_questions_in_order(storage, make_user, make_question, topic) -> None:
    admin = make_user(role='admin')
    questions = [make_question() for _ in range(3)]
    ordered_ids = [questions[2].id, questions[0].id]

    assessment = create_topic_assessment(
        topic_id=topic.id,
        data=AssessmentCreateRequest(name='Signs Quiz', mode='manual', question_ids=ordered_ids),
        current_user=admin,
        storage=storage,
    )

    linked = list_assessment_questions(assessment_id=assessment.id, current_user=admin, storage=storage)
    assert [item.question_id for item in linked] == ordered_ids
    assert assessment.order_index == 0
    assert storage.get_audit_logs()[0].action == 'CREATE_ASSESSMENT'


@pytest.mark.parametrize(
    ('payload', 'detail'),
    [
        ({'mode': 'random'}, 'Random assessments need a positive question count'),
        ({'mode': 'manual'}, 'Manual assessments need at least one question'),
        ({'mode': 'linked_template', 'test_template_id': 'missing'}, 'Linked assessments need an existing test template'),
        ({'mode': 'manual', 'question_ids': ['missing']}, 'One or more questions do not exist'),
    ],
)
def test_create_assessment_rejects_invalid_configuration(storage, make_user, topic, payload: dict, detail: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_topic_assessment(
            topic_id=topic.id,
            data=AssessmentCreateRequest(name='Quiz', **payload),
            current_user=make_user(role='admin'),
            storage=storage,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == detail


def test_duplicate_question_ids_are_rejected(storage, make_user, make_question, topic) -> None:
    question = make_question()

    with pytest.raises(HTTPException) as exception_info:
        create_topic_assessment(
            topic_id=topic.id,
            data=AssessmentCreateRequest(name='Quiz', mode='manual', question_ids=[question.id, question.id]),
            current_user=make_user(role='admin'),
            storage=storage,
        )

    assert exception_info.value.detail == 'Question ids must be unique'


def test_update_assessment_replaces_question_list(storage, make_user, make_question, topic) -> None:
    admin = make_user(role='admin')
    first, second = make_question(), make_question()
    assessment = storage.create_topic_assessment(topic_id=topic.id, name='Quiz', mode='manual', question_ids=[first.id])

    updated = update_topic_assessment(
        assessment_id=assessment.id,
        data=AssessmentUpdateRequest(question_ids=[second.id], status='published'),
        current_user=admin,
        storage=storage,
    )

    assert updated.status == 'published'
    linked = list_assessment_questions(assessment_id=assessment.id, current_user=admin, storage=storage)
    assert [item.question_id for item in linked] == [second.id]


def test_reorder_assessment_questions(storage, make_user, make_question, topic) -> None:
    admin = make_user(role='admin')
    first, second = make_question(), make_question()
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Quiz', mode='manual', question_ids=[first.id, second.id]
    )

    reordered = reorder_assessment_questions(
        assessment_id=assessment.id,
        data=ReorderAssessmentQuestionsRequest(
            question_orders=[
                QuestionOrder(question_id=first.id, order_index=1),
                QuestionOrder(question_id=second.id, order_index=0),
            ]
        ),
        current_user=admin,
        storage=storage,
    )

    assert [item.question_id for item in reordered] == [second.id, first.id]


def test_start_assessment_requires_enrollment(storage, make_user, make_question, topic) -> None:
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Quiz', mode='manual', status='published', question_ids=[make_question().id]
    )

    with pytest.raises(HTTPException) as exception_info:
        start_assessment(assessment_id=assessment.id, current_user=make_user(), storage=storage)

    assert exception_info.value.status_code == 403


def test_start_draft_assessment_is_rejected(storage, make_question, topic, enrolled_student) -> None:
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Quiz', mode='manual', question_ids=[make_question().id]
    )

    with pytest.raises(HTTPException) as exception_info:
        start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)

    assert exception_info.value.detail == 'Assessment is not published'


def test_start_assessment_enforces_max_attempts(storage, make_question, topic, enrolled_student) -> None:
    question = make_question(correct='A')
    assessment = storage.create_topic_assessment(
        topic_id=topic.id,
        name='Quiz',
        mode='manual',
        status='published',
        max_attempts=2,
        time_limit=15,
        question_ids=[question.id],
    )

    for _ in range(2):
        started = start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)
        assert started.time_limit == 15
        submit_test(
            instance_id=started.test_instance.id,
            data=SubmitTestRequest(answers={question.id: 'B'}),
            current_user=enrolled_student,
            storage=storage,
        )

    with pytest.raises(HTTPException) as exception_info:
        start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)

    assert exception_info.value.detail == 'Maximum attempts reached'


def test_restarting_resumes_the_open_attempt(storage, make_question, topic, enrolled_student) -> None:
    question = make_question(correct='A')
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Quiz', mode='manual', status='published', max_attempts=1,
        question_ids=[question.id],
    )

    first = start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)
    again = start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)

    assert again.test_instance.id == first.test_instance.id
    assert again.questions == first.questions
    assert 'explanation' not in again.questions[0]
    submit_test(
        instance_id=first.test_instance.id,
        data=SubmitTestRequest(answers={question.id: 'A'}),
        current_user=enrolled_student,
        storage=storage,
    )
    with pytest.raises(HTTPException) as exception_info:
        start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)
    assert exception_info.value.detail == 'Maximum attempts reached'


def test_submit_rejects_attempts_beyond_the_limit(storage, make_question, topic, enrolled_student) -> None:
    question = make_question(correct='A')
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Quiz', mode='manual', status='published', max_attempts=1,
        question_ids=[question.id],
    )
    open_instances = [
        storage.create_test_instance(
            topic_assessment_id=assessment.id,
            student_id=enrolled_student.id,
            questions_data=[grading.snapshot_question(question)],
            started_at=datetime.now(),
        )
        for _ in range(3)
    ]

    submit_test(
        instance_id=open_instances[0].id,
        data=SubmitTestRequest(answers={question.id: 'A'}),
        current_user=enrolled_student,
        storage=storage,
    )
    for instance in open_instances[1:]:
        with pytest.raises(HTTPException) as exception_info:
            submit_test(
                instance_id=instance.id,
                data=SubmitTestRequest(answers={question.id: 'A'}),
                current_user=enrolled_student,
                storage=storage,
            )
        assert exception_info.value.detail == 'Maximum attempts reached'

    assert storage.count_submitted_attempts(assessment.id, enrolled_student.id) == 1
    assert storage.get_test_instance(open_instances[1].id).submitted_at is None


def test_assessment_uses_its_own_passing_percentage(storage, make_question, topic, enrolled_student) -> None:
    first, second = make_question(correct='A'), make_question(correct='A')
    assessment = storage.create_topic_assessment(
        topic_id=topic.id,
        name='Quiz',
        mode='manual',
        status='published',
        passing_percentage=50,
        question_ids=[first.id, second.id],
    )

    started = start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)
    instance = submit_test(
        instance_id=started.test_instance.id,
        data=SubmitTestRequest(answers={first.id: 'A'}),
        current_user=enrolled_student,
        storage=storage,
    )

    assert instance.percentage == 50
    assert instance.passed is True


def test_linked_assessment_records_template(storage, make_question, topic, enrolled_student) -> None:
    question = make_question()
    template = storage.create_test_template(name='Final', mode='manual')
    storage.add_question_to_test(template.id, question.id)
    assessment = storage.create_topic_assessment(
        topic_id=topic.id, name='Linked', mode='linked_template', status='published', test_template_id=template.id
    )

    started = start_assessment(assessment_id=assessment.id, current_user=enrolled_student, storage=storage)

    assert started.test_instance.test_template_id == template.id
    assert [q['id'] for q in started.questions] == [question.id]
