from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.milestone import MilestoneStatus
from app.schemas.common import CamelModel


class MilestoneResponse(CamelModel):
    id: str
    thesis_id: str
    template_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    order_index: int
    status: MilestoneStatus
    progress_percentage: int

    target_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    supervisor_notes: Optional[str] = None
    student_notes: Optional[str] = None
    evidence_url: Optional[str] = None

    created_at: datetime
    updated_at: Optional[datetime] = None


class MilestoneProgressResponse(CamelModel):
    total: int
    completed: int
    in_progress: int
    not_started: int
    pending_review: int
    revision_needed: int
    percent_complete: float
    average_progress: float


class ThesisMilestonesResponse(CamelModel):
    milestones: List[MilestoneResponse]
    progress: MilestoneProgressResponse


class MilestoneEnvelope(CamelModel):
    milestone: MilestoneResponse


class NextMilestoneResponse(CamelModel):
    milestone: Optional[MilestoneResponse] = None
    all_complete: bool


class MilestoneProgressUpdate(CamelModel):
    progress_percentage: int = Field(..., ge=0, le=100)
    student_notes: Optional[str] = Field(None, max_length=5000)


class MilestoneSubmit(CamelModel):
    student_notes: Optional[str] = Field(None, max_length=5000)
    evidence_url: Optional[str] = Field(None, max_length=1000)


class MilestoneValidate(CamelModel):
    supervisor_notes: Optional[str] = Field(None, max_length=5000)


class MilestoneRevisionRequest(CamelModel):
    supervisor_notes: str = Field(..., min_length=1, max_length=5000)


class MilestoneTemplateResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    order_index: int


class MilestoneTemplateListResponse(CamelModel):
    templates: List[MilestoneTemplateResponse]


class MilestonesFromTemplates(CamelModel):
    template_ids: List[str] = Field(..., min_length=1)


def serialize_milestone(milestone: Any) -> Dict[str, Any]:
    return MilestoneResponse.model_validate(milestone).model_dump(mode="json", by_alias=True)
