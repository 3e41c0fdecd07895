import re
from datetime import datetime

import pytest

from drivingschool.services import certificates
from drivingschool.services.certificates import generate_certificate_number, issue_certificate, render_certificate_pdf
from drivingschool.services.completion import check_course_completion, has_passed_completion_test


def test_generate_certificate_number_format() -> None:
    number = generate_certificate_number(datetime(2026, 4, 1))

    assert re.fullmatch(r'DS-2026-[0-9A-F]{8}', number)


def test_issue_certificate_retries_on_collision(storage, make_user, make_course, monkeypatch: pytest.MonkeyPatch) -> None:
    student = make_user()
    course = make_course()
    issue_certificate(storage, course.id, student.id)
    taken = storage.get_certificates_by_student(student.id)[0].certificate_number

    numbers = iter([taken, 'DS-2026-00000001'])
    monkeypatch.setattr(certificates, 'generate_certificate_number', lambda now=None: next(numbers))

    certificate = issue_certificate(storage, course.id, student.id)

    assert certificate.certificate_number == 'DS-2026-00000001'


def test_issue_certificate_gives_up_after_repeated_collisions(
    storage, make_user, make_course, monkeypatch: pytest.MonkeyPatch
) -> None:
    student = make_user()
    course = make_course()
    taken = issue_certificate(storage, course.id, student.id).certificate_number
    monkeypatch.setattr(certificates, 'generate_certificate_number', lambda now=None: taken)

    with pytest.raises(RuntimeError):
        issue_certificate(storage, course.id, student.id)


def test_render_certificate_pdf_returns_pdf_bytes(storage, make_user, make_course) -> None:
    student = make_user()
    course = make_course()
    certificate = issue_certificate(storage, course.id, student.id)

    pdf = render_certificate_pdf(certificate, student_name='Zoë Ångström', course_name=course.name)

    assert pdf.startswith(b'%PDF')
    assert b'Helvetica' in pdf


def _submit_attempt(storage, template, student, percentage: int, passed: bool):
    return storage.create_test_instance(
        test_template_id=template.id,
        student_id=student.id,
        questions_data=[],
        percentage=percentage,
        passed=passed,
        submitted_at=datetime.now(),
    )


def test_has_passed_completion_test_prefers_min_score(storage, make_user, make_course) -> None:
    student = make_user()
    course = make_course()
    template = storage.create_test_template(name='Final', mode='manual', passing_percentage=70)
    link = storage.add_completion_test(course.id, template.id, min_score=90)
    _submit_attempt(storage, template, student, percentage=85, passed=True)

    assert has_passed_completion_test(storage, link, student.id) is False

    _submit_attempt(storage, template, student, percentage=90, passed=True)

    assert has_passed_completion_test(storage, link, student.id) is True


def test_check_course_completion_requires_every_completion_test(storage, make_user, make_course) -> None:
    student = make_user()
    course = make_course()
    theory = storage.create_test_template(name='Theory', mode='manual')
    practice = storage.create_test_template(name='Practice', mode='manual')
    storage.add_completion_test(course.id, theory.id)
    storage.add_completion_test(course.id, practice.id)
    enrollment = storage.create_enrollment(course.id, student.id)

    _submit_attempt(storage, theory, student, percentage=100, passed=True)
    assert check_course_completion(storage, theory.id, student.id) == []
    assert storage.get_enrollment_by_id(enrollment.id).completed_at is None

    _submit_attempt(storage, practice, student, percentage=80, passed=True)
    issued = check_course_completion(storage, practice.id, student.id)

    assert len(issued) == 1
    assert issued[0].course_id == course.id
    assert storage.get_enrollment_by_id(enrollment.id).completed_at is not None


def test_check_course_completion_skips_completed_and_unenrolled(storage, make_user, make_course) -> None:
    student = make_user()
    course = make_course()
    template = storage.create_test_template(name='Final', mode='manual')
    storage.add_completion_test(course.id, template.id)
    _submit_attempt(storage, template, student, percentage=100, passed=True)

    assert check_course_completion(storage, template.id, student.id) == []

    storage.create_enrollment(course.id, student.id)
    assert len(check_course_completion(storage, template.id, student.id)) == 1
    assert check_course_completion(storage, template.id, student.id) == []
    assert len(storage.get_certificates_by_student(student.id)) == 1
