"""Test instance model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String

from drivingschool.database import Base
from drivingschool.models.user import new_id


class TestInstance(Base):
    """One attempt by a student, holding the snapshot of the questions served."""
    __tablename__ = "test_instances"
    __test__ = False

    id = Column(String, primary_key=True, default=new_id)
    test_template_id = Column(String, ForeignKey("test_templates.id", ondelete="RESTRICT"), index=True)
    topic_assessment_id = Column(String, ForeignKey("topic_assessments.id", ondelete="SET NULL"), index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    questions_data = Column(JSON, nullable=False)
    answers_data = Column(JSON)
    score = Column(Integer)
    percentage = Column(Integer)
    passed = Column(Boolean)
    started_at = Column(DateTime, nullable=False, default=datetime.now)
    submitted_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
