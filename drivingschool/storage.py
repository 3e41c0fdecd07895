"""Data-access façade: one method per query or mutation."""

import logging
from datetime import datetime
from functools import wraps

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from drivingschool.models.assessment import AssessmentQuestion, TopicAssessment
from drivingschool.models.audit_log import AuditLog
from drivingschool.models.auth_session import AuthSession
from drivingschool.models.certificate import Certificate
from drivingschool.models.course import Course, CourseCompletionTest, Post, Topic
from drivingschool.models.enrollment import CourseEnrollment
from drivingschool.models.payment import Payment
from drivingschool.models.question import Question
from drivingschool.models.schedule import Attendance, Schedule, SessionRegistration
from drivingschool.models.test_instance import TestInstance
from drivingschool.models.test_template import TestQuestion, TestTemplate
from drivingschool.models.user import User

logger = logging.getLogger(__name__)

REORDER_DIRECTIONS = ('up', 'down')


def _mutation(method):
    """Roll the session back when a write fails so the request can report it cleanly."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError:
            self.db.rollback()
            raise
    return wrapper


def _apply(instance, data: dict) -> None:
    for key, value in data.items():
        setattr(instance, key, value)


class DatabaseStorage:
    def __init__(self, db: Session):
        self.db = db

    def _add(self, instance):
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        return instance

    def _update(self, instance, data: dict):
        _apply(instance, data)
        self.db.commit()
        self.db.refresh(instance)
        return instance

    def _delete(self, instance) -> None:
        self.db.delete(instance)
        self.db.commit()

    # Users

    def get_user(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        normalized = (email or '').strip().lower()
        if not normalized:
            return None
        return self.db.query(User).filter(func.lower(User.email) == normalized).first()

    def get_user_by_oidc_subject(self, subject: str) -> User | None:
        return self.db.query(User).filter(User.oidc_subject == subject).first()

    def get_all_users(self) -> list[User]:
        return self.db.query(User).order_by(User.created_at.desc()).all()

    @_mutation
    def create_user(self, **data) -> User:
        return self._add(User(**data))

    @_mutation
    def update_user(self, user: User, data: dict) -> User:
        return self._update(user, data)

    # Login sessions

    @_mutation
    def create_auth_session(self, user_id: str, auth_method: str, expires_at: datetime) -> AuthSession:
        return self._add(AuthSession(user_id=user_id, auth_method=auth_method, expires_at=expires_at))

    def get_auth_session(self, session_id: str) -> AuthSession | None:
        return self.db.get(AuthSession, session_id)

    @_mutation
    def delete_auth_session(self, session_id: str) -> None:
        self.db.query(AuthSession).filter(AuthSession.id == session_id).delete()
        self.db.commit()

    @_mutation
    def delete_expired_auth_sessions(self, now: datetime) -> int:
        deleted = self.db.query(AuthSession).filter(AuthSession.expires_at <= now).delete()
        self.db.commit()
        return deleted

    # Courses

    def get_courses(self, active_only: bool = False) -> list[Course]:
        query = self.db.query(Course)
        if active_only:
            query = query.filter(Course.is_active.is_(True))
        return query.order_by(Course.created_at.desc()).all()

    def get_course(self, course_id: str) -> Course | None:
        return self.db.get(Course, course_id)

    @_mutation
    def create_course(self, **data) -> Course:
        return self._add(Course(**data))

    @_mutation
    def update_course(self, course: Course, data: dict) -> Course:
        return self._update(course, data)

    @_mutation
    def delete_course(self, course: Course) -> None:
        self._delete(course)

    def course_has_billing_records(self, course_id: str) -> bool:
        has_payment = self.db.query(Payment.id).filter(Payment.course_id == course_id).first() is not None
        has_certificate = self.db.query(Certificate.id).filter(Certificate.course_id == course_id).first() is not None
        return has_payment or has_certificate

    def get_courses_with_schedule_count(self, active_only: bool = False) -> list[tuple[Course, int]]:
        counts = (
            self.db.query(Schedule.course_id, func.count(Schedule.id).label('schedule_count'))
            .group_by(Schedule.course_id)
            .subquery()
        )
        query = self.db.query(Course, func.coalesce(counts.c.schedule_count, 0)).outerjoin(
            counts, counts.c.course_id == Course.id
        )
        if active_only:
            query = query.filter(Course.is_active.is_(True))
        return [(course, int(count)) for course, count in query.order_by(Course.created_at.desc()).all()]

    def get_course_with_content(self, course_id: str, published_only: bool = True) -> dict | None:
        course = self.get_course(course_id)
        if course is None:
            return None

        topics = self.get_topics_by_course(course_id)
        topic_ids = [topic.id for topic in topics]
        posts_by_topic: dict[str, list[Post]] = {topic_id: [] for topic_id in topic_ids}
        assessments_by_topic: dict[str, list[TopicAssessment]] = {topic_id: [] for topic_id in topic_ids}

        if topic_ids:
            for post in (
                self.db.query(Post)
                .filter(Post.topic_id.in_(topic_ids))
                .order_by(Post.order_index.asc(), Post.created_at.asc())
                .all()
            ):
                posts_by_topic[post.topic_id].append(post)

            assessment_query = self.db.query(TopicAssessment).filter(TopicAssessment.topic_id.in_(topic_ids))
            if published_only:
                assessment_query = assessment_query.filter(TopicAssessment.status == 'published')
            for assessment in assessment_query.order_by(TopicAssessment.order_index.asc()).all():
                assessments_by_topic[assessment.topic_id].append(assessment)

        return {
            'course': course,
            'topics': [
                {
                    'topic': topic,
                    'posts': posts_by_topic[topic.id],
                    'assessments': assessments_by_topic[topic.id],
                }
                for topic in topics
            ],
        }

    # Topics and posts

    def get_topics_by_course(self, course_id: str) -> list[Topic]:
        return (
            self.db.query(Topic)
            .filter(Topic.course_id == course_id)
            .order_by(Topic.order_index.asc(), Topic.created_at.asc())
            .all()
        )

    def get_topic(self, topic_id: str) -> Topic | None:
        return self.db.get(Topic, topic_id)

    @_mutation
    def create_topic(self, **data) -> Topic:
        return self._add(Topic(**data))

    @_mutation
    def update_topic(self, topic: Topic, data: dict) -> Topic:
        return self._update(topic, data)

    @_mutation
    def delete_topic(self, topic: Topic) -> None:
        self._delete(topic)

    @_mutation
    def reorder_topic(self, topic: Topic, direction: str) -> None:
        self._swap_with_neighbour(topic, self.get_topics_by_course(topic.course_id), direction)

    def get_posts_by_topic(self, topic_id: str) -> list[Post]:
        return (
            self.db.query(Post)
            .filter(Post.topic_id == topic_id)
            .order_by(Post.order_index.asc(), Post.created_at.asc())
            .all()
        )

    def get_post(self, post_id: str) -> Post | None:
        return self.db.get(Post, post_id)

    @_mutation
    def create_post(self, **data) -> Post:
        return self._add(Post(**data))

    @_mutation
    def update_post(self, post: Post, data: dict) -> Post:
        return self._update(post, data)

    @_mutation
    def delete_post(self, post: Post) -> None:
        self._delete(post)

    @_mutation
    def reorder_post(self, post: Post, direction: str) -> None:
        self._swap_with_neighbour(post, self.get_posts_by_topic(post.topic_id), direction)

    def _swap_with_neighbour(self, item, siblings: list, direction: str) -> None:
        if direction not in REORDER_DIRECTIONS:
            raise ValueError(f'Invalid direction: {direction}')

        # Normalise first so duplicate order indexes still swap predictably.
        for index, sibling in enumerate(siblings):
            sibling.order_index = index

        position = next(index for index, sibling in enumerate(siblings) if sibling.id == item.id)
        target = position - 1 if direction == 'up' else position + 1
        if 0 <= target < len(siblings):
            neighbour = siblings[target]
            item.order_index, neighbour.order_index = neighbour.order_index, item.order_index

        self.db.commit()

    # Questions

    def get_questions(self, include_archived: bool = True) -> list[Question]:
        query = self.db.query(Question)
        if not include_archived:
            query = query.filter(Question.is_archived.is_(False))
        return query.order_by(Question.created_at.desc()).all()

    def get_active_questions(self) -> list[Question]:
        return self.get_questions(include_archived=False)

    def get_question(self, question_id: str) -> Question | None:
        return self.db.get(Question, question_id)

    def get_questions_by_ids(self, question_ids: list[str]) -> list[Question]:
        if not question_ids:
            return []
        found = {q.id: q for q in self.db.query(Question).filter(Question.id.in_(question_ids)).all()}
        return [found[question_id] for question_id in question_ids if question_id in found]

    @_mutation
    def create_question(self, **data) -> Question:
        return self._add(Question(**data))

    @_mutation
    def update_question(self, question: Question, data: dict) -> Question:
        return self._update(question, data)

    @_mutation
    def delete_question(self, question: Question) -> None:
        self._delete(question)

    def search_questions(self, text: str | None = None, tag: str | None = None, limit: int = 10) -> list[Question]:
        query = self.db.query(Question).filter(Question.is_archived.is_(False))
        if text:
            query = query.filter(Question.question_text.ilike(f'%{text}%'))
        questions = query.order_by(Question.created_at.desc()).all()
        # Tags live in a JSON column, filtered here to stay portable across backends.
        if tag:
            questions = [question for question in questions if tag in (question.tags or [])]
        return questions[:limit]

    # Test templates

    def get_test_templates(self) -> list[TestTemplate]:
        return self.db.query(TestTemplate).order_by(TestTemplate.created_at.desc()).all()

    def get_test_template(self, template_id: str) -> TestTemplate | None:
        return self.db.get(TestTemplate, template_id)

    @_mutation
    def create_test_template(self, **data) -> TestTemplate:
        return self._add(TestTemplate(**data))

    @_mutation
    def update_test_template(self, template: TestTemplate, data: dict) -> TestTemplate:
        return self._update(template, data)

    @_mutation
    def delete_test_template(self, template: TestTemplate) -> None:
        self._delete(template)

    def count_template_instances(self, template_id: str) -> int:
        return self.db.query(TestInstance).filter(TestInstance.test_template_id == template_id).count()

    def get_test_questions(self, template_id: str) -> list[tuple[TestQuestion, Question]]:
        return (
            self.db.query(TestQuestion, Question)
            .join(Question, Question.id == TestQuestion.question_id)
            .filter(TestQuestion.test_template_id == template_id)
            .order_by(TestQuestion.order_index.asc())
            .all()
        )

    @_mutation
    def add_question_to_test(self, template_id: str, question_id: str, order_index: int = 0) -> TestQuestion:
        return self._add(TestQuestion(test_template_id=template_id, question_id=question_id, order_index=order_index))

    @_mutation
    def remove_question_from_test(self, template_id: str, question_id: str) -> int:
        deleted = self.db.query(TestQuestion).filter(
            TestQuestion.test_template_id == template_id,
            TestQuestion.question_id == question_id,
        ).delete()
        self.db.commit()
        return deleted

    def get_test_templates_by_course(self, course_id: str) -> list[TestTemplate]:
        return (
            self.db.query(TestTemplate)
            .join(CourseCompletionTest, CourseCompletionTest.test_template_id == TestTemplate.id)
            .filter(CourseCompletionTest.course_id == course_id)
            .all()
        )

    # Topic assessments

    def get_topic_assessments(self, topic_id: str) -> list[TopicAssessment]:
        return (
            self.db.query(TopicAssessment)
            .filter(TopicAssessment.topic_id == topic_id)
            .order_by(TopicAssessment.order_index.asc())
            .all()
        )

    def get_topic_assessment(self, assessment_id: str) -> TopicAssessment | None:
        return self.db.get(TopicAssessment, assessment_id)

    @_mutation
    def create_topic_assessment(self, question_ids: list[str] | None = None, **data) -> TopicAssessment:
        assessment = TopicAssessment(**data)
        self.db.add(assessment)
        self.db.flush()
        for order_index, question_id in enumerate(question_ids or []):
            self.db.add(AssessmentQuestion(assessment_id=assessment.id, question_id=question_id, order_index=order_index))
        self.db.commit()
        self.db.refresh(assessment)
        return assessment

    @_mutation
    def update_topic_assessment(self, assessment: TopicAssessment, data: dict) -> TopicAssessment:
        return self._update(assessment, data)

    @_mutation
    def delete_topic_assessment(self, assessment: TopicAssessment) -> None:
        self._delete(assessment)

    def get_assessment_questions(self, assessment_id: str) -> list[tuple[AssessmentQuestion, Question]]:
        return (
            self.db.query(AssessmentQuestion, Question)
            .join(Question, Question.id == AssessmentQuestion.question_id)
            .filter(AssessmentQuestion.assessment_id == assessment_id)
            .order_by(AssessmentQuestion.order_index.asc())
            .all()
        )

    @_mutation
    def add_question_to_assessment(self, assessment_id: str, question_id: str, order_index: int | None = None) -> AssessmentQuestion:
        if order_index is None:
            current_max = self.db.query(func.max(AssessmentQuestion.order_index)).filter(
                AssessmentQuestion.assessment_id == assessment_id
            ).scalar()
            order_index = 0 if current_max is None else current_max + 1
        return self._add(AssessmentQuestion(assessment_id=assessment_id, question_id=question_id, order_index=order_index))

    @_mutation
    def remove_question_from_assessment(self, assessment_id: str, question_id: str) -> int:
        deleted = self.db.query(AssessmentQuestion).filter(
            AssessmentQuestion.assessment_id == assessment_id,
            AssessmentQuestion.question_id == question_id,
        ).delete()
        self.db.commit()
        return deleted

    @_mutation
    def set_assessment_questions(self, assessment_id: str, question_ids: list[str]) -> None:
        self.db.query(AssessmentQuestion).filter(AssessmentQuestion.assessment_id == assessment_id).delete()
        for order_index, question_id in enumerate(question_ids):
            self.db.add(AssessmentQuestion(assessment_id=assessment_id, question_id=question_id, order_index=order_index))
        self.db.commit()

    @_mutation
    def reorder_assessment_questions(self, assessment_id: str, question_orders: dict[str, int]) -> None:
        links = self.db.query(AssessmentQuestion).filter(AssessmentQuestion.assessment_id == assessment_id).all()
        for link in links:
            if link.question_id in question_orders:
                link.order_index = question_orders[link.question_id]
        self.db.commit()

    def count_submitted_attempts(self, assessment_id: str, student_id: str) -> int:
        return self.db.query(TestInstance).filter(
            TestInstance.topic_assessment_id == assessment_id,
            TestInstance.student_id == student_id,
            TestInstance.submitted_at.is_not(None),
        ).count()

    def get_open_assessment_attempt(self, assessment_id: str, student_id: str) -> TestInstance | None:
        return self.db.query(TestInstance).filter(
            TestInstance.topic_assessment_id == assessment_id,
            TestInstance.student_id == student_id,
            TestInstance.submitted_at.is_(None),
        ).order_by(TestInstance.started_at.desc()).first()

    # Test instances

    @_mutation
    def create_test_instance(self, **data) -> TestInstance:
        return self._add(TestInstance(**data))

    def get_test_instance(self, instance_id: str) -> TestInstance | None:
        return self.db.get(TestInstance, instance_id)

    @_mutation
    def update_test_instance(self, instance: TestInstance, data: dict) -> TestInstance:
        return self._update(instance, data)

    def get_test_instances_by_student(self, student_id: str) -> list[TestInstance]:
        return (
            self.db.query(TestInstance)
            .filter(TestInstance.student_id == student_id)
            .order_by(TestInstance.created_at.desc())
            .all()
        )

    def get_submitted_test_instances(self) -> list[TestInstance]:
        return (
            self.db.query(TestInstance)
            .filter(TestInstance.submitted_at.is_not(None))
            .order_by(TestInstance.submitted_at.desc())
            .all()
        )

    # Enrollments

    @_mutation
    def create_enrollment(self, course_id: str, student_id: str) -> CourseEnrollment:
        return self._add(CourseEnrollment(course_id=course_id, student_id=student_id))

    def get_enrollment(self, course_id: str, student_id: str) -> CourseEnrollment | None:
        return self.db.query(CourseEnrollment).filter(
            CourseEnrollment.course_id == course_id,
            CourseEnrollment.student_id == student_id,
        ).first()

    def get_enrollment_by_id(self, enrollment_id: str) -> CourseEnrollment | None:
        return self.db.get(CourseEnrollment, enrollment_id)

    def get_enrollments_by_student(self, student_id: str) -> list[CourseEnrollment]:
        return (
            self.db.query(CourseEnrollment)
            .filter(CourseEnrollment.student_id == student_id)
            .order_by(CourseEnrollment.enrolled_at.desc())
            .all()
        )

    def get_all_enrollments(self) -> list[CourseEnrollment]:
        return self.db.query(CourseEnrollment).order_by(CourseEnrollment.enrolled_at.desc()).all()

    @_mutation
    def update_enrollment(self, enrollment: CourseEnrollment, data: dict) -> CourseEnrollment:
        return self._update(enrollment, data)

    def get_enrollments_with_course_details(self, student_id: str) -> list[tuple[CourseEnrollment, Course]]:
        return (
            self.db.query(CourseEnrollment, Course)
            .join(Course, Course.id == CourseEnrollment.course_id)
            .filter(CourseEnrollment.student_id == student_id)
            .order_by(CourseEnrollment.enrolled_at.desc())
            .all()
        )

    def get_all_enrollments_with_details(self) -> list[tuple[CourseEnrollment, Course, User]]:
        return (
            self.db.query(CourseEnrollment, Course, User)
            .join(Course, Course.id == CourseEnrollment.course_id)
            .join(User, User.id == CourseEnrollment.student_id)
            .order_by(CourseEnrollment.enrolled_at.desc())
            .all()
        )

    def get_enrolled_students(self, course_id: str) -> list[tuple[CourseEnrollment, User]]:
        return (
            self.db.query(CourseEnrollment, User)
            .join(User, User.id == CourseEnrollment.student_id)
            .filter(CourseEnrollment.course_id == course_id)
            .order_by(CourseEnrollment.enrolled_at.desc())
            .all()
        )

    # Completion tests

    def get_completion_tests(self, course_id: str) -> list[CourseCompletionTest]:
        return self.db.query(CourseCompletionTest).filter(CourseCompletionTest.course_id == course_id).all()

    def get_completion_test(self, completion_test_id: str) -> CourseCompletionTest | None:
        return self.db.get(CourseCompletionTest, completion_test_id)

    def get_completion_tests_for_template(self, template_id: str) -> list[CourseCompletionTest]:
        return self.db.query(CourseCompletionTest).filter(CourseCompletionTest.test_template_id == template_id).all()

    @_mutation
    def add_completion_test(self, course_id: str, test_template_id: str, min_score: int | None = None) -> CourseCompletionTest:
        return self._add(CourseCompletionTest(course_id=course_id, test_template_id=test_template_id, min_score=min_score))

    @_mutation
    def remove_completion_test(self, completion_test: CourseCompletionTest) -> None:
        self._delete(completion_test)

    def get_submitted_instances_for_template(self, template_id: str, student_id: str) -> list[TestInstance]:
        return self.db.query(TestInstance).filter(
            TestInstance.test_template_id == template_id,
            TestInstance.student_id == student_id,
            TestInstance.submitted_at.is_not(None),
        ).all()

    # Schedules

    def get_schedules(self) -> list[Schedule]:
        return self.db.query(Schedule).order_by(Schedule.start_time.asc()).all()

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self.db.get(Schedule, schedule_id)

    def get_schedule_for_update(self, schedule_id: str) -> Schedule | None:
        return self.db.query(Schedule).filter(Schedule.id == schedule_id).with_for_update().first()

    def get_schedules_by_course(self, course_id: str) -> list[Schedule]:
        return (
            self.db.query(Schedule)
            .filter(Schedule.course_id == course_id)
            .order_by(Schedule.start_time.asc())
            .all()
        )

    def get_schedules_by_instructor(self, instructor_id: str) -> list[Schedule]:
        return (
            self.db.query(Schedule)
            .filter(Schedule.instructor_id == instructor_id)
            .order_by(Schedule.start_time.asc())
            .all()
        )

    def get_schedules_for_student(self, student_id: str) -> list[Schedule]:
        return (
            self.db.query(Schedule)
            .join(CourseEnrollment, CourseEnrollment.course_id == Schedule.course_id)
            .filter(
                CourseEnrollment.student_id == student_id,
                CourseEnrollment.is_active.is_(True),
            )
            .order_by(Schedule.start_time.asc())
            .all()
        )

    @_mutation
    def create_schedule(self, **data) -> Schedule:
        return self._add(Schedule(**data))

    @_mutation
    def update_schedule(self, schedule: Schedule, data: dict) -> Schedule:
        return self._update(schedule, data)

    @_mutation
    def delete_schedule(self, schedule: Schedule) -> None:
        self._delete(schedule)

    @_mutation
    def register_for_session(self, schedule_id: str, student_id: str) -> SessionRegistration:
        return self._add(SessionRegistration(schedule_id=schedule_id, student_id=student_id))

    @_mutation
    def unregister_from_session(self, schedule_id: str, student_id: str) -> int:
        deleted = self.db.query(SessionRegistration).filter(
            SessionRegistration.schedule_id == schedule_id,
            SessionRegistration.student_id == student_id,
        ).delete()
        self.db.commit()
        return deleted

    def get_session_registration_count(self, schedule_id: str) -> int:
        return self.db.query(SessionRegistration).filter(SessionRegistration.schedule_id == schedule_id).count()

    def get_registration_counts(self, schedule_ids: list[str]) -> dict[str, int]:
        if not schedule_ids:
            return {}
        rows = (
            self.db.query(SessionRegistration.schedule_id, func.count(SessionRegistration.id))
            .filter(SessionRegistration.schedule_id.in_(schedule_ids))
            .group_by(SessionRegistration.schedule_id)
            .all()
        )
        return {schedule_id: int(count) for schedule_id, count in rows}

    def is_student_registered(self, schedule_id: str, student_id: str) -> bool:
        return self.db.query(SessionRegistration).filter(
            SessionRegistration.schedule_id == schedule_id,
            SessionRegistration.student_id == student_id,
        ).first() is not None

    def get_registered_schedule_ids(self, student_id: str) -> set[str]:
        rows = self.db.query(SessionRegistration.schedule_id).filter(SessionRegistration.student_id == student_id).all()
        return {schedule_id for (schedule_id,) in rows}

    def get_session_registrations(self, schedule_id: str) -> list[tuple[SessionRegistration, User]]:
        return (
            self.db.query(SessionRegistration, User)
            .join(User, User.id == SessionRegistration.student_id)
            .filter(SessionRegistration.schedule_id == schedule_id)
            .order_by(SessionRegistration.registered_at.asc())
            .all()
        )

    def count_upcoming_registrations(self, student_id: str, now: datetime) -> int:
        return (
            self.db.query(SessionRegistration)
            .join(Schedule, Schedule.id == SessionRegistration.schedule_id)
            .filter(SessionRegistration.student_id == student_id, Schedule.start_time > now)
            .count()
        )

    # Attendance

    def get_attendance_for_schedule(self, schedule_id: str) -> list[Attendance]:
        return self.db.query(Attendance).filter(Attendance.schedule_id == schedule_id).all()

    @_mutation
    def mark_attendance(self, schedule_id: str, student_id: str, status: str, marked_by: str | None) -> Attendance:
        record = self.db.query(Attendance).filter(
            Attendance.schedule_id == schedule_id,
            Attendance.student_id == student_id,
        ).first()
        if record is None:
            record = Attendance(schedule_id=schedule_id, student_id=student_id)
            self.db.add(record)
        record.status = status
        record.marked_by = marked_by
        record.marked_at = datetime.now()
        self.db.commit()
        self.db.refresh(record)
        return record

    # Payments

    @_mutation
    def create_payment(self, **data) -> Payment:
        return self._add(Payment(**data))

    def get_payment(self, payment_id: str) -> Payment | None:
        return self.db.get(Payment, payment_id)

    def get_payment_by_intent_id(self, intent_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.stripe_payment_intent_id == intent_id).first()

    def get_payments_by_student(self, student_id: str) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.student_id == student_id)
            .order_by(Payment.created_at.desc())
            .all()
        )

    def get_all_payments(self) -> list[Payment]:
        return self.db.query(Payment).order_by(Payment.created_at.desc()).all()

    @_mutation
    def update_payment(self, payment: Payment, data: dict) -> Payment:
        return self._update(payment, data)

    # Certificates

    @_mutation
    def create_certificate(self, **data) -> Certificate:
        return self._add(Certificate(**data))

    def get_certificate(self, certificate_id: str) -> Certificate | None:
        return self.db.get(Certificate, certificate_id)

    def get_certificate_by_number(self, certificate_number: str) -> Certificate | None:
        return self.db.query(Certificate).filter(Certificate.certificate_number == certificate_number).first()

    def get_certificates_by_student(self, student_id: str) -> list[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(Certificate.student_id == student_id)
            .order_by(Certificate.issued_at.desc())
            .all()
        )

    def get_active_certificate(self, course_id: str, student_id: str) -> Certificate | None:
        return self.db.query(Certificate).filter(
            Certificate.course_id == course_id,
            Certificate.student_id == student_id,
            Certificate.revoked_at.is_(None),
        ).first()

    def get_all_certificates(self) -> list[Certificate]:
        return self.db.query(Certificate).order_by(Certificate.issued_at.desc()).all()

    @_mutation
    def update_certificate(self, certificate: Certificate, data: dict) -> Certificate:
        return self._update(certificate, data)

    # Audit log

    @_mutation
    def create_audit_log(
        self,
        user_id: str | None,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        return self._add(
            AuditLog(user_id=user_id, action=action, entity_type=entity_type, entity_id=entity_id, details=details)
        )

    def get_audit_logs(self, limit: int = 100) -> list[AuditLog]:
        return self.db.query(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit).all()

    # Lookups shared by several screens

    def get_users_by_ids(self, user_ids: set[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        return {user.id: user for user in self.db.query(User).filter(User.id.in_(user_ids)).all()}

    def get_courses_by_ids(self, course_ids: set[str]) -> dict[str, Course]:
        if not course_ids:
            return {}
        return {course.id: course for course in self.db.query(Course).filter(Course.id.in_(course_ids)).all()}

    def get_topics_by_ids(self, topic_ids: set[str]) -> dict[str, Topic]:
        if not topic_ids:
            return {}
        return {topic.id: topic for topic in self.db.query(Topic).filter(Topic.id.in_(topic_ids)).all()}

