"""Course content model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from drivingschool.database import Base
from drivingschool.models.user import new_id

TOPIC_TYPES = ('theory', 'practice')


class Course(Base):
    """Represents a course offered by the school."""
    __tablename__ = "courses"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100))
    price = Column(Numeric(10, 2))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Topic(Base):
    """An ordered section of a course."""
    __tablename__ = "topics"

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(20), nullable=False, default='theory')
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class Post(Base):
    """HTML content inside a topic."""
    __tablename__ = "posts"

    id = Column(String, primary_key=True, default=new_id)
    topic_id = Column(String, ForeignKey("topics.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


class CourseCompletionTest(Base):
    """A test template a student must pass to complete a course."""
    __tablename__ = "course_completion_tests"

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    test_template_id = Column(String, ForeignKey("test_templates.id", ondelete="CASCADE"), nullable=False)
    min_score = Column(Integer)  # overrides the template's passing percentage
