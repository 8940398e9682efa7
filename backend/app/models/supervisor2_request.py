import enum
from datetime import datetime

from sqlalchemy import Column, Text, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import GUID, StrEnumType, generate_uuid


class Supervisor2RequestStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Supervisor2Request(Base):
    """A student's request for a lecturer to become their second supervisor"""
    __tablename__ = "supervisor2_requests"
    __table_args__ = (
        Index(
            "uq_supervisor2_one_pending_per_student",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'requested'"),
            postgresql_where=text("status = 'requested'"),
        ),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    student_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)
    thesis_id = Column(GUID, ForeignKey("theses.id"), nullable=False)
    lecturer_id = Column(GUID, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(
        StrEnumType(Supervisor2RequestStatus),
        default=Supervisor2RequestStatus.REQUESTED,
        nullable=False,
    )
    message = Column(Text, nullable=True)  # from the student
    response_message = Column(Text, nullable=True)  # from the lecturer

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    responded_at = Column(DateTime, nullable=True)

    student = relationship("User", foreign_keys=[student_id], lazy="joined")
    lecturer = relationship("User", foreign_keys=[lecturer_id], lazy="joined")
