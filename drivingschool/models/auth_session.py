"""Login session model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String

from drivingschool.database import Base
from drivingschool.models.user import new_id


class AuthSession(Base):
    """A server-side login session referenced by the session cookie."""
    __tablename__ = "auth_sessions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    auth_method = Column(String, nullable=False, default='local')  # local/oidc
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
