"""Marks course enrollments complete once every completion test is passed."""

import logging
from datetime import datetime

from drivingschool.models.certificate import Certificate
from drivingschool.models.course import CourseCompletionTest
from drivingschool.services.certificates import issue_certificate

logger = logging.getLogger(__name__)


def has_passed_completion_test(storage, completion_test: CourseCompletionTest, student_id: str) -> bool:
    instances = storage.get_submitted_instances_for_template(completion_test.test_template_id, student_id)
    if completion_test.min_score is not None:
        return any((instance.percentage or 0) >= completion_test.min_score for instance in instances)
    return any(instance.passed for instance in instances)


def check_course_completion(storage, template_id: str, student_id: str) -> list[Certificate]:
    """Complete every course the template gates, returning the certificates issued."""
    issued: list[Certificate] = []
    checked_courses: set[str] = set()

    for link in storage.get_completion_tests_for_template(template_id):
        if link.course_id in checked_courses:
            continue
        checked_courses.add(link.course_id)

        enrollment = storage.get_enrollment(link.course_id, student_id)
        if enrollment is None or not enrollment.is_active or enrollment.completed_at is not None:
            continue

        required_tests = storage.get_completion_tests(link.course_id)
        if not all(has_passed_completion_test(storage, test, student_id) for test in required_tests):
            continue

        storage.update_enrollment(enrollment, {'completed_at': datetime.now()})
        logger.info('Student %s completed course %s', student_id, link.course_id)

        if storage.get_active_certificate(link.course_id, student_id) is None:
            issued.append(issue_certificate(storage, link.course_id, student_id))

    return issued
