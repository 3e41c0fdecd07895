from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from drivingschool.auth.dependencies import get_current_user, get_storage
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

router = APIRouter(tags=['dashboard'])

RECENT_ACTIVITY_LIMIT = 5


class RecentActivity(BaseModel):
    test_instance_id: str
    test_name: str | None = None
    percentage: int | None = None
    passed: bool | None = None
    submitted_at: datetime


class DashboardStatsResponse(BaseModel):
    enrolled_courses: int
    completed_courses: int
    upcoming_sessions: int
    tests_passed: int
    tests_total: int
    certificates: int
    recent_activity: list[RecentActivity]


@router.get('/dashboard/stats', response_model=DashboardStatsResponse)
def get_dashboard_stats(current_user: User = Depends(get_current_user), storage: DatabaseStorage = Depends(get_storage)):
    enrollments = storage.get_enrollments_by_student(current_user.id)
    submitted = [
        instance for instance in storage.get_test_instances_by_student(current_user.id)
        if instance.submitted_at is not None
    ]
    submitted.sort(key=lambda instance: instance.submitted_at, reverse=True)
    certificates = storage.get_certificates_by_student(current_user.id)

    template_names = {template.id: template.name for template in storage.get_test_templates()}
    recent_activity = []
    for instance in submitted[:RECENT_ACTIVITY_LIMIT]:
        if instance.topic_assessment_id:
            assessment = storage.get_topic_assessment(instance.topic_assessment_id)
            test_name = assessment.name if assessment else None
        else:
            test_name = template_names.get(instance.test_template_id)
        recent_activity.append(
            RecentActivity(
                test_instance_id=instance.id,
                test_name=test_name,
                percentage=instance.percentage,
                passed=instance.passed,
                submitted_at=instance.submitted_at,
            )
        )

    return DashboardStatsResponse(
        enrolled_courses=sum(1 for enrollment in enrollments if enrollment.is_active),
        completed_courses=sum(1 for enrollment in enrollments if enrollment.completed_at is not None),
        upcoming_sessions=storage.count_upcoming_registrations(current_user.id, datetime.now()),
        tests_passed=sum(1 for instance in submitted if instance.passed),
        tests_total=len(submitted),
        certificates=sum(1 for certificate in certificates if certificate.revoked_at is None),
        recent_activity=recent_activity,
    )
