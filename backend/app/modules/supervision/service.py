"""
Supervisor-2 request flow.

A student whose thesis has only a first supervisor may ask a lecturer to
become the second one. The one-pending-per-student rule is the same
``PendingRequestGate`` that guards guidance requests, watching its own
table: a pending guidance request does not block a supervisor-2 request
and vice versa.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AuthorizationError,
    Supervisor2RequestNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from app.core.logging_config import logger
from app.core.types import generate_uuid
from app.models.supervisor2_request import Supervisor2Request, Supervisor2RequestStatus
from app.models.thesis import Thesis
from app.models.user import User, UserRole
from app.modules.guidance.pending_gate import PendingRequestGate, supervisor2_request_gate
from app.modules.guidance.state_machine import LifecycleStateMachine


SUPERVISOR2_TRANSITIONS: Dict[Supervisor2RequestStatus, Set[Supervisor2RequestStatus]] = {
    Supervisor2RequestStatus.REQUESTED: {
        Supervisor2RequestStatus.ACCEPTED,
        Supervisor2RequestStatus.REJECTED,
        Supervisor2RequestStatus.CANCELLED,
    },
    Supervisor2RequestStatus.ACCEPTED: set(),
    Supervisor2RequestStatus.REJECTED: set(),
    Supervisor2RequestStatus.CANCELLED: set(),
}

supervisor2_state_machine = LifecycleStateMachine("supervisor2_request", SUPERVISOR2_TRANSITIONS)


class Supervisor2Service:

    def __init__(
        self,
        db: AsyncSession,
        gate: PendingRequestGate = supervisor2_request_gate,
        machine: LifecycleStateMachine = supervisor2_state_machine,
    ):
        self.db = db
        self.gate = gate
        self.machine = machine

    async def _load(self, request_id: str) -> Supervisor2Request:
        result = await self.db.execute(
            select(Supervisor2Request)
            .where(Supervisor2Request.id == str(request_id))
            .execution_options(populate_existing=True)
        )
        request = result.unique().scalar_one_or_none()
        if request is None:
            raise Supervisor2RequestNotFoundError(str(request_id))
        return request

    async def _student_thesis(self, student_id: str) -> Thesis:
        result = await self.db.execute(
            select(Thesis)
            .where(Thesis.student_id == str(student_id))
            .order_by(Thesis.created_at.desc())
            .limit(1)
        )
        thesis = result.unique().scalar_one_or_none()
        if thesis is None:
            raise ValidationError("You need a registered thesis before requesting a second supervisor")
        return thesis

    async def pending_for_student(self, student: User) -> Optional[Supervisor2Request]:
        return await self.gate.find_pending(self.db, str(student.id))

    async def list_for_user(self, user: User) -> List[Supervisor2Request]:
        """Own requests for a student, incoming ones for a lecturer; newest first"""
        if user.role == UserRole.STUDENT:
            condition = Supervisor2Request.student_id == str(user.id)
        elif user.role == UserRole.LECTURER:
            condition = Supervisor2Request.lecturer_id == str(user.id)
        else:
            raise AuthorizationError("Supervisor 2 requests are only listed for students and lecturers")

        result = await self.db.execute(
            select(Supervisor2Request)
            .where(condition)
            .order_by(Supervisor2Request.created_at.desc(), Supervisor2Request.id.desc())
        )
        return list(result.unique().scalars().all())

    async def create(self, student: User, lecturer_id: str, message: Optional[str] = None) -> Supervisor2Request:
        if student.role != UserRole.STUDENT:
            raise AuthorizationError("Only students can request a second supervisor")
        student_id = str(student.id)

        thesis = await self._student_thesis(student_id)
        if thesis.supervisor_2_id:
            raise ValidationError("Your thesis already has a second supervisor", field="lecturerId")

        lecturer = await self.db.get(User, str(lecturer_id))
        if lecturer is None:
            raise UserNotFoundError(str(lecturer_id))
        if lecturer.role != UserRole.LECTURER:
            raise ValidationError("The selected user is not a lecturer", field="lecturerId")
        if str(lecturer.id) == str(thesis.supervisor_1_id):
            raise ValidationError("The selected lecturer is already your first supervisor", field="lecturerId")

        await self.gate.ensure_can_create(self.db, student_id)

        request = Supervisor2Request(
            id=generate_uuid(),
            student_id=student_id,
            thesis_id=str(thesis.id),
            lecturer_id=str(lecturer.id),
            status=Supervisor2RequestStatus.REQUESTED,
            message=message,
        )
        self.db.add(request)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            await self.gate.translate_integrity_error(self.db, student_id, e)
            raise

        logger.log_transition("supervisor2_request", str(request.id), None,
                              Supervisor2RequestStatus.REQUESTED.value, student_id)
        return await self._load(request.id)

    async def _respond(self, request: Supervisor2Request, target: Supervisor2RequestStatus,
                       action: str, actor: User, response_message: Optional[str] = None) -> Supervisor2Request:
        current = Supervisor2RequestStatus(request.status)
        self.machine.validate(current, target, action)

        request.status = target
        request.responded_at = datetime.utcnow()
        if response_message:
            request.response_message = response_message
        logger.log_transition("supervisor2_request", str(request.id), current.value, target.value,
                              str(actor.id), action=action)

        await self.db.flush()
        return await self._load(request.id)

    async def approve(self, request_id: str, lecturer: User, message: Optional[str] = None) -> Supervisor2Request:
        """Accept and become the thesis's second supervisor"""
        request = await self._load(request_id)
        if str(request.lecturer_id) != str(lecturer.id):
            raise AuthorizationError("Only the requested lecturer can respond to this request")
        self.machine.validate(Supervisor2RequestStatus(request.status), Supervisor2RequestStatus.ACCEPTED, "approve")

        thesis = await self.db.get(Thesis, str(request.thesis_id))
        if thesis is None or thesis.supervisor_2_id:
            raise ValidationError("This thesis already has a second supervisor")

        thesis.supervisor_2_id = str(lecturer.id)
        return await self._respond(request, Supervisor2RequestStatus.ACCEPTED, "approve", lecturer, message)

    async def reject(self, request_id: str, lecturer: User, message: Optional[str] = None) -> Supervisor2Request:
        request = await self._load(request_id)
        if str(request.lecturer_id) != str(lecturer.id):
            raise AuthorizationError("Only the requested lecturer can respond to this request")
        return await self._respond(request, Supervisor2RequestStatus.REJECTED, "reject", lecturer, message)

    async def cancel(self, request_id: str, student: User) -> Supervisor2Request:
        request = await self._load(request_id)
        if str(request.student_id) != str(student.id):
            raise AuthorizationError("Only the requesting student can cancel this request")
        return await self._respond(request, Supervisor2RequestStatus.CANCELLED, "cancel", student)
