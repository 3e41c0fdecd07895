"""Audit log model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from drivingschool.database import Base
from drivingschool.models.user import new_id


class AuditLog(Base):
    """Records an administrative action."""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"))
    action = Column(String(255), nullable=False)
    entity_type = Column(String(100))
    entity_id = Column(String)
    details = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)
