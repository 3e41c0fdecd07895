"""Certificate model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from drivingschool.database import Base
from drivingschool.models.user import new_id


class Certificate(Base):
    """A course completion certificate."""
    __tablename__ = "certificates"

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    certificate_number = Column(String(100), nullable=False, unique=True)
    issued_at = Column(DateTime, nullable=False, default=datetime.now)
    revoked_at = Column(DateTime)
    revoked_reason = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
