"""
Guidance session endpoints

Students request, reschedule, annotate, cancel and summarise sessions;
the assigned supervisor approves, rejects and signs off the summary.
Errors are raised as SupervisionError subclasses and rendered by the
application's exception handler.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.config import settings
from app.core.database import get_db
from app.models.guidance import GuidanceStatus
from app.models.user import User
from app.modules.auth.dependencies import get_current_student, get_current_user
from app.modules.guidance.service import GuidanceService
from app.schemas.guidance import (
    GuidanceActivityListResponse,
    GuidanceActivityResponse,
    GuidanceCancel,
    GuidanceCreate,
    GuidanceDecision,
    GuidanceEnvelope,
    GuidanceListResponse,
    GuidanceNotesUpdate,
    GuidanceReschedule,
    GuidanceSummarySubmit,
    PendingGuidanceResponse,
    serialize_guidance,
)

router = APIRouter(prefix="/guidance", tags=["Guidance"])


def _envelope(session) -> dict:
    return {"guidance": serialize_guidance(session)}


@router.get("", response_model=GuidanceListResponse)
async def list_guidance(
    status_filter: Optional[GuidanceStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Caller's sessions (as student or as supervisor), most recent first"""
    items = await GuidanceService(db).list_history(current_user, status_filter)
    return {"items": [serialize_guidance(s) for s in items]}


@router.post("", response_model=GuidanceEnvelope, status_code=201)
async def create_guidance(
    body: GuidanceCreate,
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a guidance session.

    Fails with 409 when the student already has a pending request or the
    supervisor is busy at that time, and with 503 when the supervisor's
    availability could not be verified.
    """
    session = await GuidanceService(db).create(
        current_user,
        supervisor_id=body.supervisor_id,
        requested_date=body.requested_date,
        duration_minutes=body.duration_minutes,
        student_notes=body.student_notes,
        milestone_id=body.milestone_id,
        document_url=body.document_url,
    )
    return _envelope(session)


@router.get("/pending", response_model=PendingGuidanceResponse)
async def get_pending_guidance(
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    """The student's outstanding request, if any, and whether a new one may be made"""
    pending = await GuidanceService(db).pending_for_student(current_user)
    return {
        "pending": serialize_guidance(pending) if pending else None,
        "canCreate": pending is None,
    }


@router.get("/upcoming", response_model=GuidanceListResponse)
async def list_upcoming_guidance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items = await GuidanceService(db).list_upcoming(current_user)
    return {"items": [serialize_guidance(s) for s in items]}


@router.get("/options")
async def get_guidance_options(current_user: User = Depends(get_current_user)):
    """Scheduling options offered when proposing a session"""
    return {
        "durationOptions": settings.GUIDANCE_DURATION_OPTIONS,
        "defaultDuration": settings.DEFAULT_GUIDANCE_DURATION,
        "maxDuration": settings.MAX_GUIDANCE_DURATION,
        "timezone": settings.TIMEZONE,
    }


@router.get("/{guidance_id}", response_model=GuidanceEnvelope)
async def get_guidance(
    guidance_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payload = await GuidanceService(db).get_detail(guidance_id, current_user)
    return {"guidance": payload}


@router.get("/{guidance_id}/activity", response_model=GuidanceActivityListResponse)
async def get_guidance_activity(
    guidance_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items = await GuidanceService(db).activity(guidance_id, current_user)
    return {"items": [GuidanceActivityResponse.model_validate(log) for log in items]}


@router.post("/{guidance_id}/reschedule", response_model=GuidanceEnvelope)
async def reschedule_guidance(
    guidance_id: str,
    body: GuidanceReschedule,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Move a pending request to a new time; re-runs the availability check"""
    session = await GuidanceService(db).reschedule(
        guidance_id,
        current_user,
        requested_date=body.requested_date,
        student_notes=body.student_notes,
        duration_minutes=body.duration_minutes,
    )
    return _envelope(session)


@router.post("/{guidance_id}/cancel", response_model=GuidanceEnvelope)
async def cancel_guidance(
    guidance_id: str,
    body: GuidanceCancel,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).cancel(guidance_id, current_user, body.reason)
    return _envelope(session)


@router.patch("/{guidance_id}/notes", response_model=GuidanceEnvelope)
async def update_guidance_notes(
    guidance_id: str,
    body: GuidanceNotesUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).update_notes(guidance_id, current_user, body.student_notes)
    return _envelope(session)


@router.post("/{guidance_id}/approve", response_model=GuidanceEnvelope)
async def approve_guidance(
    guidance_id: str,
    body: Optional[GuidanceDecision] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).approve(guidance_id, current_user, body.message if body else None)
    return _envelope(session)


@router.post("/{guidance_id}/reject", response_model=GuidanceEnvelope)
async def reject_guidance(
    guidance_id: str,
    body: Optional[GuidanceDecision] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).reject(guidance_id, current_user, body.message if body else None)
    return _envelope(session)


@router.post("/{guidance_id}/summary", response_model=GuidanceEnvelope)
async def submit_guidance_summary(
    guidance_id: str,
    body: GuidanceSummarySubmit,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).submit_summary(
        guidance_id, current_user, body.session_summary, body.action_items
    )
    return _envelope(session)


@router.post("/{guidance_id}/approve-summary", response_model=GuidanceEnvelope)
async def approve_guidance_summary(
    guidance_id: str,
    body: Optional[GuidanceDecision] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await GuidanceService(db).approve_summary(
        guidance_id, current_user, body.message if body else None
    )
    return _envelope(session)
