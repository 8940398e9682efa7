from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.guidance import GuidanceStatus
from app.schemas.common import CamelModel, UserBrief


# ==================== Requests ====================

class GuidanceCreate(CamelModel):
    supervisor_id: str
    requested_date: datetime
    duration_minutes: Optional[int] = Field(None, ge=1)
    student_notes: Optional[str] = Field(None, max_length=5000)
    milestone_id: Optional[str] = None
    document_url: Optional[str] = Field(None, max_length=1000)


class GuidanceReschedule(CamelModel):
    requested_date: datetime
    student_notes: Optional[str] = Field(None, max_length=5000)
    duration_minutes: Optional[int] = Field(None, ge=1)


class GuidanceCancel(CamelModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class GuidanceNotesUpdate(CamelModel):
    student_notes: str = Field(..., max_length=5000)


class GuidanceDecision(CamelModel):
    """Body of approve / reject; the message is optional for both"""
    message: Optional[str] = Field(None, max_length=2000)


class GuidanceSummarySubmit(CamelModel):
    session_summary: str = Field(..., min_length=1)
    action_items: str = ""


# ==================== Responses ====================

class GuidanceResponse(CamelModel):
    id: str
    student_id: str
    supervisor_id: str
    thesis_id: Optional[str] = None
    milestone_id: Optional[str] = None
    status: GuidanceStatus

    requested_date: datetime
    approved_date: Optional[datetime] = None
    scheduled_at: datetime
    duration_minutes: int

    student_notes: Optional[str] = None
    session_summary: Optional[str] = None
    action_items: Optional[str] = None
    supervisor_feedback: Optional[str] = None
    cancel_reason: Optional[str] = None
    document_url: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    student: Optional[UserBrief] = None
    supervisor: Optional[UserBrief] = None


class GuidanceEnvelope(CamelModel):
    guidance: GuidanceResponse


class GuidanceListResponse(CamelModel):
    items: List[GuidanceResponse]


class PendingGuidanceResponse(CamelModel):
    pending: Optional[GuidanceResponse] = None
    can_create: bool


class GuidanceActivityResponse(CamelModel):
    id: str
    guidance_id: str
    action: str
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class GuidanceActivityListResponse(CamelModel):
    items: List[GuidanceActivityResponse]


class BusySlotResponse(CamelModel):
    start: datetime
    end: datetime
    student_name: Optional[str] = None
    guidance_id: Optional[str] = None


class AvailabilityResponse(CamelModel):
    busy_slots: List[BusySlotResponse]


class AvailabilityCheckResponse(CamelModel):
    status: str
    message: Optional[str] = None
    candidate_start: datetime
    candidate_end: datetime
    conflict: Optional[BusySlotResponse] = None


def serialize_guidance(session: Any) -> Dict[str, Any]:
    """ORM session → JSON-ready camelCase dict (the cached form)"""
    return GuidanceResponse.model_validate(session).model_dump(mode="json", by_alias=True)
