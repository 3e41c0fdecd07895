import pytest
from fastapi import HTTPException

from drivingschool.routes.certificate_routes import (
    IssueCertificateRequest,
    RevokeCertificateRequest,
    create_certificate,
    download_certificate,
    list_all_certificates,
    list_my_certificates,
    revoke_certificate,
)
from drivingschool.services.certificates import issue_certificate


def test_certificate_download_is_limited_to_owner_and_staff(storage, make_user, make_course) -> None:
    owner = make_user()
    course = make_course()
    certificate = issue_certificate(storage, course.id, owner.id)

    response = download_certificate(certificate_id=certificate.id, current_user=owner, storage=storage)
    assert response.media_type == 'application/pdf'
    assert response.body.startswith(b'%PDF')
    assert certificate.certificate_number in response.headers['content-disposition']

    download_certificate(certificate_id=certificate.id, current_user=make_user(role='instructor'), storage=storage)

    with pytest.raises(HTTPException) as exception_info:
        download_certificate(certificate_id=certificate.id, current_user=make_user(), storage=storage)
    assert exception_info.value.status_code == 403


def test_revoked_certificate_cannot_be_downloaded_by_student(storage, make_user, make_course) -> None:
    admin = make_user(role='admin')
    owner = make_user()
    course = make_course()
    certificate = issue_certificate(storage, course.id, owner.id)

    revoked = revoke_certificate(
        certificate_id=certificate.id,
        data=RevokeCertificateRequest(reason=' Issued in error '),
        current_user=admin,
        storage=storage,
    )
    assert revoked.revoked_reason == 'Issued in error'

    with pytest.raises(HTTPException) as exception_info:
        download_certificate(certificate_id=certificate.id, current_user=owner, storage=storage)
    assert exception_info.value.status_code == 400

    with pytest.raises(HTTPException) as exception_info:
        revoke_certificate(
            certificate_id=certificate.id, data=RevokeCertificateRequest(), current_user=admin, storage=storage
        )
    assert exception_info.value.detail == 'Certificate is already revoked'


def test_admin_issue_certificate_requires_enrollment_and_no_active_certificate(storage, make_user, make_course) -> None:
    admin = make_user(role='admin')
    student = make_user()
    course = make_course()
    request = IssueCertificateRequest(course_id=course.id, student_id=student.id)

    with pytest.raises(HTTPException) as exception_info:
        create_certificate(data=request, current_user=admin, storage=storage)
    assert exception_info.value.status_code == 400

    storage.create_enrollment(course.id, student.id)
    issued = create_certificate(data=request, current_user=admin, storage=storage)
    assert issued.course_name == course.name
    assert [c.id for c in list_my_certificates(current_user=student, storage=storage)] == [issued.id]

    with pytest.raises(HTTPException) as exception_info:
        create_certificate(data=request, current_user=admin, storage=storage)
    assert exception_info.value.status_code == 409


def test_admin_certificate_list_includes_student_details(storage, make_user, make_course) -> None:
    student = make_user(first_name='Alice', last_name='Johnson')
    course = make_course()
    issue_certificate(storage, course.id, student.id)

    [item] = list_all_certificates(current_user=make_user(role='admin'), storage=storage)

    assert item.student_email == student.email
    assert item.student_name == 'Alice Johnson'
    assert item.course_name == course.name
