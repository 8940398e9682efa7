"""
Guidance Session Models

A guidance session is one requested/scheduled meeting between a student
and one of their supervisors. Its ``status`` is owned by
``app.modules.guidance.state_machine``; nothing else should assign it.
"""

import enum
from datetime import datetime, timedelta

from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import GUID, StrEnumType, generate_uuid


class GuidanceStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUMMARY_PENDING = "summary_pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GuidanceSession(Base):
    __tablename__ = "guidance_sessions"
    __table_args__ = (
        # At most one outstanding request per student, enforced by the store
        Index(
            "uq_guidance_one_pending_per_student",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'requested'"),
            postgresql_where=text("status = 'requested'"),
        ),
        Index("ix_guidance_supervisor_dates", "supervisor_id", "requested_date"),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)
    supervisor_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)
    thesis_id = Column(GUID, ForeignKey("theses.id"), nullable=True)
    milestone_id = Column(GUID, ForeignKey("milestones.id"), nullable=True)

    status = Column(StrEnumType(GuidanceStatus), default=GuidanceStatus.REQUESTED, nullable=False)

    # Scheduling (naive UTC)
    requested_date = Column(DateTime, nullable=False)
    approved_date = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, default=60, nullable=False)

    # Free text filled in at different lifecycle stages
    student_notes = Column(Text, nullable=True)
    session_summary = Column(Text, nullable=True)
    action_items = Column(Text, nullable=True)
    supervisor_feedback = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    document_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    student = relationship("User", foreign_keys=[student_id], lazy="joined")
    supervisor = relationship("User", foreign_keys=[supervisor_id], lazy="joined")

    @property
    def scheduled_at(self) -> datetime:
        """Approved date once approved, otherwise the proposed date"""
        return self.approved_date or self.requested_date

    @property
    def scheduled_end(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes or 0)

    def __repr__(self):
        return f"<GuidanceSession {self.id} {self.status}>"


class GuidanceActivityLog(Base):
    """Append-only record of every lifecycle transition of a session"""
    __tablename__ = "guidance_activity_logs"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    guidance_id = Column(GUID, ForeignKey("guidance_sessions.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False)
    actor_id = Column(GUID, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
