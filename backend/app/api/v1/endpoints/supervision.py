"""
Supervisor-2 request endpoints
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.models.user import User
from app.modules.auth.dependencies import get_current_lecturer, get_current_student, get_current_user
from app.modules.supervision.service import Supervisor2Service
from app.schemas.supervision import (
    PendingSupervisor2Response,
    Supervisor2Decision,
    Supervisor2RequestCreate,
    Supervisor2RequestEnvelope,
    Supervisor2RequestListResponse,
    Supervisor2RequestResponse,
)

router = APIRouter(prefix="/supervisor2-requests", tags=["Supervisor 2"])


def _dump(request) -> dict:
    return Supervisor2RequestResponse.model_validate(request).model_dump(mode="json", by_alias=True)


@router.get("", response_model=Supervisor2RequestListResponse)
async def list_supervisor2_requests(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """A student's own requests, or the requests addressed to a lecturer"""
    items = await Supervisor2Service(db).list_for_user(current_user)
    return {"items": [_dump(r) for r in items]}


@router.post("", response_model=Supervisor2RequestEnvelope, status_code=201)
async def create_supervisor2_request(
    body: Supervisor2RequestCreate,
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    request = await Supervisor2Service(db).create(current_user, body.lecturer_id, body.message)
    return {"request": _dump(request)}


@router.get("/pending", response_model=PendingSupervisor2Response)
async def get_pending_supervisor2_request(
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    pending = await Supervisor2Service(db).pending_for_student(current_user)
    return {"pending": _dump(pending) if pending else None, "canCreate": pending is None}


@router.post("/{request_id}/approve", response_model=Supervisor2RequestEnvelope)
async def approve_supervisor2_request(
    request_id: str,
    body: Optional[Supervisor2Decision] = None,
    current_user: User = Depends(get_current_lecturer),
    db: AsyncSession = Depends(get_db),
):
    request = await Supervisor2Service(db).approve(request_id, current_user, body.message if body else None)
    return {"request": _dump(request)}


@router.post("/{request_id}/reject", response_model=Supervisor2RequestEnvelope)
async def reject_supervisor2_request(
    request_id: str,
    body: Optional[Supervisor2Decision] = None,
    current_user: User = Depends(get_current_lecturer),
    db: AsyncSession = Depends(get_db),
):
    request = await Supervisor2Service(db).reject(request_id, current_user, body.message if body else None)
    return {"request": _dump(request)}


@router.post("/{request_id}/cancel", response_model=Supervisor2RequestEnvelope)
async def cancel_supervisor2_request(
    request_id: str,
    current_user: User = Depends(get_current_student),
    db: AsyncSession = Depends(get_db),
):
    request = await Supervisor2Service(db).cancel(request_id, current_user)
    return {"request": _dump(request)}
