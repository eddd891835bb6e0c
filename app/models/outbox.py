"""
Outbox model

Hand-offs to external collaborators (notifier, payroll incidences, shift
exceptions) are written here inside the transition's transaction and
delivered by a separate dispatcher.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
import enum
from app.db.base import Base


class OutboxEventType(str, enum.Enum):
    NOTIFICATION = "NOTIFICATION"
    PAYROLL_INCIDENCE = "PAYROLL_INCIDENCE"
    SHIFT_EXCEPTION = "SHIFT_EXCEPTION"


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(30), nullable=False, index=True)
    request_id = Column(Integer, ForeignKey("absence_requests.id"), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    dispatched_at = Column(DateTime(timezone=True), nullable=True, index=True)
