"""
Milestone Models

Milestones are the thesis progress checkpoints. They are instantiated from
``MilestoneTemplate`` rows when a thesis starts, moved forward by the student
(progress / submit for review) and by the supervisor (validate / request
revision), and only removed together with their thesis.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, ForeignKey

from app.core.database import Base
from app.core.types import GUID, StrEnumType, generate_uuid


class MilestoneStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    REVISION_NEEDED = "revision_needed"
    COMPLETED = "completed"


class MilestoneTemplate(Base):
    __tablename__ = "milestone_templates"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    order_index = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    thesis_id = Column(GUID, ForeignKey("theses.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(GUID, ForeignKey("milestone_templates.id"), nullable=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)

    status = Column(StrEnumType(MilestoneStatus), default=MilestoneStatus.NOT_STARTED, nullable=False)
    progress_percentage = Column(Integer, default=0, nullable=False)

    target_date = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Review
    validated_by = Column(GUID, ForeignKey("users.id"), nullable=True)
    validated_at = Column(DateTime, nullable=True)
    supervisor_notes = Column(Text, nullable=True)
    student_notes = Column(Text, nullable=True)
    evidence_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Milestone {self.order_index}:{self.title} {self.status}>"
