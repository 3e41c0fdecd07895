"""Schedule, registration and attendance model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint

from drivingschool.database import Base
from drivingschool.models.user import new_id

ATTENDANCE_STATUSES = ('present', 'absent')


class Schedule(Base):
    """A scheduled lesson with a fixed number of seats."""
    __tablename__ = "schedules"

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    topic_id = Column(String, ForeignKey("topics.id", ondelete="SET NULL"))
    instructor_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    location = Column(String(255))
    capacity = Column(Integer, nullable=False, default=20)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class SessionRegistration(Base):
    """A student's seat in a scheduled lesson."""
    __tablename__ = "session_registrations"
    __table_args__ = (UniqueConstraint('schedule_id', 'student_id', name='uq_registration_schedule_student'),)

    id = Column(String, primary_key=True, default=new_id)
    schedule_id = Column(String, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    registered_at = Column(DateTime, nullable=False, default=datetime.now)


class Attendance(Base):
    """Attendance mark for a registered student."""
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint('schedule_id', 'student_id', name='uq_attendance_schedule_student'),)

    id = Column(String, primary_key=True, default=new_id)
    schedule_id = Column(String, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(*ATTENDANCE_STATUSES, name='attendance_status'), nullable=False)
    marked_at = Column(DateTime, nullable=False, default=datetime.now)
    marked_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
