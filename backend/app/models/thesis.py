from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from app.core.database import Base
from app.core.types import GUID, generate_uuid


class Thesis(Base):
    """A student's thesis with its (up to two) supervisors"""
    __tablename__ = "theses"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    supervisor_1_id = Column(GUID, ForeignKey("users.id"), nullable=True)
    supervisor_2_id = Column(GUID, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = relationship("User", foreign_keys=[student_id], lazy="joined")

    def supervisor_ids(self):
        return [sid for sid in (self.supervisor_1_id, self.supervisor_2_id) if sid]

    def __repr__(self):
        return f"<Thesis {self.id} student={self.student_id}>"
