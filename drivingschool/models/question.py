"""Question bank model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, String, Text

from drivingschool.database import Base
from drivingschool.models.user import new_id

QUESTION_TYPES = ('single_choice', 'multiple_choice')


class Question(Base):
    """A standalone question; choices hold [{"label": str, "is_correct": bool}]."""
    __tablename__ = "questions"

    id = Column(String, primary_key=True, default=new_id)
    question_text = Column(Text, nullable=False)
    explanation = Column(Text)
    type = Column(Enum(*QUESTION_TYPES, name='question_type'), nullable=False)
    choices = Column(JSON, nullable=False)
    tags = Column(JSON)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
