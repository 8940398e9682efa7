"""
Pending Request Gate

A student may hold at most one outstanding ("requested") request of a given
kind at any time, regardless of which lecturer it targets. The same rule
shape guards both guidance requests and supervisor-2 requests, so it is a
single class parameterised by the model it watches.

The gate is the application-level check. The partial unique indexes on the
watched tables are the authoritative one: two creates racing past the gate
are still resolved by the store, and ``translate_integrity_error`` turns
that rejection into the same ``PendingRequestExistsError``.
"""

from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PendingRequestExistsError
from app.core.logging_config import logger
from app.models.guidance import GuidanceSession, GuidanceStatus
from app.models.supervisor2_request import Supervisor2Request, Supervisor2RequestStatus

ModelT = TypeVar("ModelT")


class PendingRequestGate(Generic[ModelT]):
    """
    One-pending-per-student rule over ``model``.

    Args:
        model: SQLAlchemy model holding the requests
        pending_status: status value meaning "awaiting a response"
        label: human name of the request kind, used in messages
        describe: builds the ``pending`` payload shown to the user
        unique_index: name of the partial unique index backing the rule
    """

    def __init__(
        self,
        model: Type[ModelT],
        pending_status: Any,
        label: str,
        describe: Callable[[ModelT], Dict[str, Any]],
        unique_index: str,
    ):
        self.model = model
        self.pending_status = pending_status
        self.label = label
        self.describe = describe
        self.unique_index = unique_index

    async def find_pending(self, db: AsyncSession, student_id: str) -> Optional[ModelT]:
        """Oldest outstanding request of the student, if any"""
        result = await db.execute(
            select(self.model)
            .where(
                self.model.student_id == str(student_id),
                self.model.status == self.pending_status,
            )
            .order_by(self.model.created_at, self.model.id)
            .limit(1)
        )
        return result.unique().scalars().first()

    async def can_create_request(self, db: AsyncSession, student_id: str) -> bool:
        return await self.find_pending(db, student_id) is None

    def blocked(self, pending: ModelT) -> PendingRequestExistsError:
        return PendingRequestExistsError(
            f"You already have a pending {self.label}. "
            f"Wait for a response or cancel it before making a new one.",
            pending=self.describe(pending),
        )

    async def ensure_can_create(self, db: AsyncSession, student_id: str) -> None:
        """Raise PendingRequestExistsError carrying the existing request"""
        pending = await self.find_pending(db, student_id)
        if pending is not None:
            logger.info(
                f"[PendingGate] Blocked new {self.label} for student {student_id}: "
                f"{pending.id} still pending"
            )
            raise self.blocked(pending)

    def is_violation(self, error: IntegrityError) -> bool:
        return self.unique_index in str(error.orig) or (
            "UNIQUE constraint failed" in str(error.orig)
            and f"{self.model.__tablename__}.student_id" in str(error.orig)
        )

    async def translate_integrity_error(self, db: AsyncSession, student_id: str,
                                        error: IntegrityError) -> None:
        """
        Called after a failed flush and rollback. Re-raises as
        PendingRequestExistsError when the backing index rejected the insert.
        """
        if not self.is_violation(error):
            raise error
        pending = await self.find_pending(db, student_id)
        if pending is None:
            raise error
        raise self.blocked(pending)


def _describe_guidance(session: GuidanceSession) -> Dict[str, Any]:
    supervisor = session.supervisor
    return {
        "id": str(session.id),
        "supervisorId": str(session.supervisor_id),
        "supervisorName": supervisor.display_name if supervisor else None,
        "requestedDate": session.requested_date.isoformat() if session.requested_date else None,
    }


def _describe_supervisor2(request: Supervisor2Request) -> Dict[str, Any]:
    lecturer = request.lecturer
    return {
        "id": str(request.id),
        "lecturerId": str(request.lecturer_id),
        "lecturerName": lecturer.display_name if lecturer else None,
        "createdAt": request.created_at.isoformat() if request.created_at else None,
    }


guidance_request_gate: PendingRequestGate[GuidanceSession] = PendingRequestGate(
    model=GuidanceSession,
    pending_status=GuidanceStatus.REQUESTED,
    label="guidance request",
    describe=_describe_guidance,
    unique_index="uq_guidance_one_pending_per_student",
)

supervisor2_request_gate: PendingRequestGate[Supervisor2Request] = PendingRequestGate(
    model=Supervisor2Request,
    pending_status=Supervisor2RequestStatus.REQUESTED,
    label="supervisor 2 request",
    describe=_describe_supervisor2,
    unique_index="uq_supervisor2_one_pending_per_student",
)
