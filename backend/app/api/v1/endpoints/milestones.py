"""
Milestone endpoints - thesis progress checkpoints and templates
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.user import User
from app.modules.auth.dependencies import get_current_user
from app.modules.milestones.service import MilestoneService
from app.schemas.milestone import (
    MilestoneEnvelope,
    MilestoneProgressUpdate,
    MilestoneRevisionRequest,
    MilestonesFromTemplates,
    MilestoneSubmit,
    MilestoneTemplateListResponse,
    MilestoneTemplateResponse,
    MilestoneValidate,
    NextMilestoneResponse,
    ThesisMilestonesResponse,
    serialize_milestone,
)

router = APIRouter(tags=["Milestones"])


def _envelope(milestone) -> dict:
    return {"milestone": serialize_milestone(milestone)}


# ==================== Thesis scope ====================

@router.get("/thesis/{thesis_id}/milestones", response_model=ThesisMilestonesResponse)
async def get_thesis_milestones(
    thesis_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Milestones in order, with the progress summary derived from them"""
    return await MilestoneService(db).thesis_overview(thesis_id, current_user)


@router.get("/thesis/{thesis_id}/milestones/next", response_model=NextMilestoneResponse)
async def get_next_milestone(
    thesis_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await MilestoneService(db).next_for_thesis(thesis_id, current_user)
    return {
        "milestone": serialize_milestone(milestone) if milestone else None,
        "allComplete": milestone is None,
    }


@router.post("/thesis/{thesis_id}/milestones/from-templates", response_model=ThesisMilestonesResponse,
             status_code=201)
async def create_milestones_from_templates(
    thesis_id: str,
    body: MilestonesFromTemplates,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = MilestoneService(db)
    milestones = await service.create_from_templates(thesis_id, current_user, body.template_ids)
    return {
        "milestones": [serialize_milestone(m) for m in milestones],
        "progress": service.aggregator.summarize(milestones).to_dict(),
    }


@router.get("/milestone-templates", response_model=MilestoneTemplateListResponse)
async def list_milestone_templates(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    templates = await MilestoneService(db).list_templates()
    return {"templates": [MilestoneTemplateResponse.model_validate(t) for t in templates]}


# ==================== Single milestone ====================

@router.get("/milestones/{milestone_id}", response_model=MilestoneEnvelope)
async def get_milestone(
    milestone_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await MilestoneService(db).get(milestone_id, current_user)
    return _envelope(milestone)


@router.patch("/milestones/{milestone_id}/progress", response_model=MilestoneEnvelope)
async def update_milestone_progress(
    milestone_id: str,
    body: MilestoneProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await MilestoneService(db).update_progress(
        milestone_id, current_user, body.progress_percentage, body.student_notes
    )
    return _envelope(milestone)


@router.post("/milestones/{milestone_id}/submit", response_model=MilestoneEnvelope)
async def submit_milestone_for_review(
    milestone_id: str,
    body: MilestoneSubmit,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await MilestoneService(db).submit_for_review(
        milestone_id, current_user, body.student_notes, body.evidence_url
    )
    return _envelope(milestone)


@router.post("/milestones/{milestone_id}/validate", response_model=MilestoneEnvelope)
async def validate_milestone(
    milestone_id: str,
    body: MilestoneValidate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Supervisor sign-off; the milestone becomes completed and immutable"""
    milestone = await MilestoneService(db).validate(milestone_id, current_user, body.supervisor_notes)
    return _envelope(milestone)


@router.post("/milestones/{milestone_id}/request-revision", response_model=MilestoneEnvelope)
async def request_milestone_revision(
    milestone_id: str,
    body: MilestoneRevisionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await MilestoneService(db).request_revision(milestone_id, current_user, body.supervisor_notes)
    return _envelope(milestone)
