"""User model definitions."""

from datetime import datetime
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, String

from drivingschool.database import Base

ROLES = ('student', 'instructor', 'admin')


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Represents an application user, local or federated."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    password = Column(String)  # bcrypt hash, empty for OIDC-only accounts
    first_name = Column(String)
    last_name = Column(String)
    profile_image_url = Column(String)
    role = Column(Enum(*ROLES, name='role'), nullable=False, default='student')
    is_active = Column(Boolean, nullable=False, default=True)
    oidc_subject = Column(String, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
