"""Course enrollment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint

from drivingschool.database import Base
from drivingschool.models.user import new_id


class CourseEnrollment(Base):
    """Links a student to a course."""
    __tablename__ = "course_enrollments"
    __table_args__ = (UniqueConstraint('course_id', 'student_id', name='uq_enrollment_course_student'),)

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    enrolled_at = Column(DateTime, nullable=False, default=datetime.now)
    completed_at = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)
