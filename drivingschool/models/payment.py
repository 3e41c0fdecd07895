"""Payment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Numeric, String

from drivingschool.database import Base
from drivingschool.models.user import new_id

PAYMENT_STATUSES = ('pending', 'paid', 'failed')


class Payment(Base):
    """A course payment tracked against a processor payment intent."""
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    course_id = Column(String, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='usd')
    status = Column(Enum(*PAYMENT_STATUSES, name='payment_status'), nullable=False, default='pending')
    stripe_payment_intent_id = Column(String, index=True)
    stripe_client_secret = Column(String)
    paid_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
