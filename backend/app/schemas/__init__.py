# Pydantic schemas
from app.schemas.common import CamelModel, UserBrief
from app.schemas.guidance import (
    GuidanceCreate,
    GuidanceReschedule,
    GuidanceCancel,
    GuidanceNotesUpdate,
    GuidanceDecision,
    GuidanceSummarySubmit,
    GuidanceResponse,
    GuidanceEnvelope,
    GuidanceListResponse,
    serialize_guidance,
)
from app.schemas.milestone import (
    MilestoneResponse,
    MilestoneEnvelope,
    ThesisMilestonesResponse,
    serialize_milestone,
)
from app.schemas.supervision import (
    Supervisor2RequestCreate,
    Supervisor2Decision,
    Supervisor2RequestResponse,
)
