"""
Supervisor availability endpoints
"""
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import UserNotFoundError, ValidationError
from app.models.user import User, UserRole
from app.modules.auth.dependencies import get_current_user
from app.modules.guidance.availability import (
    AvailabilityConflictChecker,
    DatabaseBusySlotFetcher,
    to_utc_naive,
)
from app.schemas.guidance import AvailabilityCheckResponse, AvailabilityResponse

router = APIRouter(prefix="/supervisors", tags=["Supervisors"])

# Longest window a single availability query may span
MAX_WINDOW = timedelta(days=31)


async def _get_lecturer(db: AsyncSession, supervisor_id: str) -> User:
    supervisor = await db.get(User, supervisor_id)
    if supervisor is None or supervisor.role != UserRole.LECTURER:
        raise UserNotFoundError(supervisor_id)
    return supervisor


@router.get("/{supervisor_id}/availability", response_model=AvailabilityResponse)
async def get_supervisor_availability(
    supervisor_id: str,
    start: datetime = Query(..., description="Window start (ISO 8601)"),
    end: datetime = Query(..., description="Window end (ISO 8601)"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Busy slots of the supervisor overlapping [start, end]"""
    start, end = to_utc_naive(start), to_utc_naive(end)
    if end <= start:
        raise ValidationError("end must be after start", field="end")
    if end - start > MAX_WINDOW:
        raise ValidationError("Availability window is limited to 31 days", field="end")

    await _get_lecturer(db, supervisor_id)
    slots = await DatabaseBusySlotFetcher(db).fetch(supervisor_id, start, end)
    return {"busySlots": [slot.to_dict() for slot in slots]}


@router.get("/{supervisor_id}/availability/check", response_model=AvailabilityCheckResponse)
async def check_supervisor_availability(
    supervisor_id: str,
    start: datetime = Query(..., description="Proposed start (ISO 8601)"),
    duration_minutes: int = Query(settings.DEFAULT_GUIDANCE_DURATION, alias="durationMinutes", ge=1),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Would a meeting at ``start`` collide with the supervisor's schedule?

    Always answers 200; ``status`` is ``clear``, ``conflict`` or ``unknown``.
    """
    await _get_lecturer(db, supervisor_id)
    checker = AvailabilityConflictChecker(DatabaseBusySlotFetcher(db))
    result = await checker.check(supervisor_id, start, duration_minutes)
    return result.to_dict()
