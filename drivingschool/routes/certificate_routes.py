import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from pydantic import BaseModel

from drivingschool.auth.dependencies import get_current_user, get_storage, is_staff, require_admin
from drivingschool.models.user import User
from drivingschool.services.certificates import issue_certificate, render_certificate_pdf
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['certificates'])


class IssueCertificateRequest(BaseModel):
    course_id: str
    student_id: str


class RevokeCertificateRequest(BaseModel):
    reason: str | None = None


class CertificateResponse(BaseModel):
    id: str
    course_id: str
    student_id: str
    certificate_number: str
    issued_at: datetime
    revoked_at: datetime | None = None
    revoked_reason: str | None = None
    course_name: str | None = None

    class Config:
        from_attributes = True


class AdminCertificateResponse(CertificateResponse):
    student_email: str | None = None
    student_name: str | None = None


def describe_certificates(storage: DatabaseStorage, certificates: list, response_model=CertificateResponse) -> list:
    courses = storage.get_courses_by_ids({certificate.course_id for certificate in certificates})
    students = storage.get_users_by_ids({certificate.student_id for certificate in certificates})

    items = []
    for certificate in certificates:
        item = response_model.model_validate(certificate)
        course = courses.get(certificate.course_id)
        item.course_name = course.name if course else None
        if isinstance(item, AdminCertificateResponse):
            student = students.get(certificate.student_id)
            item.student_email = student.email if student else None
            item.student_name = student.full_name if student else None
        items.append(item)
    return items


def get_certificate_or_404(storage: DatabaseStorage, certificate_id: str):
    certificate = storage.get_certificate(certificate_id)
    if certificate is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Certificate not found')
    return certificate


@router.get('/certificates', response_model=list[CertificateResponse])
def list_my_certificates(current_user: User = Depends(get_current_user), storage: DatabaseStorage = Depends(get_storage)):
    return describe_certificates(storage, storage.get_certificates_by_student(current_user.id))


@router.get('/certificates/{certificate_id}/download')
def download_certificate(
    certificate_id: str,
    current_user: User = Depends(get_current_user),
    storage: DatabaseStorage = Depends(get_storage),
):
    certificate = get_certificate_or_404(storage, certificate_id)
    staff = is_staff(current_user)
    if certificate.student_id != current_user.id and not staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Insufficient permissions')
    if certificate.revoked_at is not None and not staff:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Certificate has been revoked')

    student = storage.get_user(certificate.student_id)
    course = storage.get_course(certificate.course_id)
    pdf = render_certificate_pdf(
        certificate,
        student_name=(student.full_name or student.email) if student else '',
        course_name=course.name if course else '',
    )
    return Response(
        content=pdf,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename=certificate-{certificate.certificate_number}.pdf'},
    )


@router.get('/admin/certificates', response_model=list[AdminCertificateResponse])
def list_all_certificates(current_user: User = Depends(require_admin), storage: DatabaseStorage = Depends(get_storage)):
    return describe_certificates(storage, storage.get_all_certificates(), AdminCertificateResponse)


@router.post('/admin/certificates', response_model=CertificateResponse, status_code=status.HTTP_201_CREATED)
def create_certificate(
    data: IssueCertificateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    if storage.get_enrollment(data.course_id, data.student_id) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Student is not enrolled in this course')
    if storage.get_active_certificate(data.course_id, data.student_id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Student already holds an active certificate for this course',
        )

    certificate = issue_certificate(storage, data.course_id, data.student_id)
    storage.create_audit_log(
        current_user.id,
        'ISSUE_CERTIFICATE',
        'certificate',
        certificate.id,
        {'course_id': data.course_id, 'student_id': data.student_id},
    )
    return describe_certificates(storage, [certificate])[0]


@router.post('/admin/certificates/{certificate_id}/revoke', response_model=CertificateResponse)
def revoke_certificate(
    certificate_id: str,
    data: RevokeCertificateRequest,
    current_user: User = Depends(require_admin),
    storage: DatabaseStorage = Depends(get_storage),
):
    certificate = get_certificate_or_404(storage, certificate_id)
    if certificate.revoked_at is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Certificate is already revoked')

    reason = data.reason.strip() if data.reason else None
    certificate = storage.update_certificate(certificate, {'revoked_at': datetime.now(), 'revoked_reason': reason})
    storage.create_audit_log(current_user.id, 'REVOKE_CERTIFICATE', 'certificate', certificate.id, {'reason': reason})
    logger.info('Certificate %s revoked', certificate.certificate_number)
    return describe_certificates(storage, [certificate])[0]
