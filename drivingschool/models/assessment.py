"""Topic assessment model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text

from drivingschool.database import Base
from drivingschool.models.user import new_id

ASSESSMENT_MODES = ('random', 'manual', 'linked_template')
ASSESSMENT_STATUSES = ('draft', 'published')


class TopicAssessment(Base):
    """A quiz attached to a topic."""
    __tablename__ = "topic_assessments"

    id = Column(String, primary_key=True, default=new_id)
    topic_id = Column(String, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    mode = Column(Enum(*ASSESSMENT_MODES, name='assessment_mode'), nullable=False)
    question_count = Column(Integer)
    randomize_questions = Column(Boolean, nullable=False, default=False)
    passing_percentage = Column(Integer, nullable=False, default=70)
    max_attempts = Column(Integer, nullable=False, default=3)
    time_limit = Column(Integer)  # minutes
    test_template_id = Column(String, ForeignKey("test_templates.id", ondelete="SET NULL"))
    is_required = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(*ASSESSMENT_STATUSES, name='assessment_status'), nullable=False, default='draft')
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class AssessmentQuestion(Base):
    """Links a question to a manual-mode assessment."""
    __tablename__ = "assessment_questions"

    id = Column(String, primary_key=True, default=new_id)
    assessment_id = Column(String, ForeignKey("topic_assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(String, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
