"""
Administrative audit log

Records actions outside the approval decisions themselves (request creation,
withdrawal, archive, inheritance-edge changes). Rows are append-only.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index
from app.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    action = Column(String(50), nullable=False)  # CREATE, WITHDRAW, ARCHIVE
    entity_type = Column(String(50), nullable=False)  # absence_request, role_inheritance
    entity_id = Column(Integer, nullable=True)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )
