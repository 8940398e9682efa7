"""
Guidance Service

Runs the guidance lifecycle operations against the store:

    create → reschedule* → approve | reject | cancel
    approve → submit_summary → approve_summary

Every mutating operation follows the same order:

1. load the session and resolve the caller's role on it
   (a closed session answers InvalidTransition to either participant)
2. ask the state machine whether the action is legal (raises otherwise)
3. run the remaining checks; availability runs with the supervisor's
   row locked so two bookings cannot both read the same free slot
4. apply the transition, then write the content fields
5. append an activity log row, flush, drop the cached copy and queue
   it to be dropped again after commit

No content is written before step 4, so a refused operation leaves the
row exactly as it was.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    GuidanceNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from app.core.logging_config import logger, set_guidance_id
from app.core.types import generate_uuid
from app.models.guidance import GuidanceActivityLog, GuidanceSession, GuidanceStatus
from app.models.milestone import Milestone
from app.models.thesis import Thesis
from app.models.user import User, UserRole
from app.modules.guidance.availability import (
    AvailabilityConflictChecker,
    DatabaseBusySlotFetcher,
    to_utc_naive,
)
from app.modules.guidance.pending_gate import PendingRequestGate, guidance_request_gate
from app.modules.guidance.state_machine import (
    GuidanceAction,
    GuidanceStateMachine,
    StateTransition,
    authorize,
    guidance_state_machine,
    resolve_role,
)
from app.schemas.guidance import serialize_guidance
from app.services.cache_service import CacheService, cache_service


class GuidanceService:
    """Guidance session operations for one request/transaction"""

    def __init__(
        self,
        db: AsyncSession,
        checker: Optional[AvailabilityConflictChecker] = None,
        gate: PendingRequestGate = guidance_request_gate,
        machine: GuidanceStateMachine = guidance_state_machine,
        cache: CacheService = cache_service,
    ):
        self.db = db
        self.checker = checker or AvailabilityConflictChecker(DatabaseBusySlotFetcher(db))
        self.gate = gate
        self.machine = machine
        self.cache = cache

    # =====================================================
    # READS
    # =====================================================

    async def _load(self, guidance_id: str) -> GuidanceSession:
        result = await self.db.execute(
            select(GuidanceSession)
            .where(GuidanceSession.id == str(guidance_id))
            .execution_options(populate_existing=True)
        )
        session = result.unique().scalar_one_or_none()
        if session is None:
            raise GuidanceNotFoundError(str(guidance_id))
        return session

    async def get(self, guidance_id: str, user: User) -> GuidanceSession:
        """Session visible to its student and its supervisor only"""
        session = await self._load(guidance_id)
        if resolve_role(session, user.id) is None:
            raise AuthorizationError("You are not a participant of this guidance session")
        set_guidance_id(str(session.id))
        return session

    async def get_detail(self, guidance_id: str, user: User) -> Dict[str, Any]:
        """Serialized session, served from the cache when possible"""
        cached = await self.cache.get(CacheService.ENTITY_GUIDANCE, str(guidance_id))
        if cached is not None:
            if str(user.id) not in (cached.get("studentId"), cached.get("supervisorId")):
                raise AuthorizationError("You are not a participant of this guidance session")
            return cached

        session = await self.get(guidance_id, user)
        payload = serialize_guidance(session)
        await self.cache.set(CacheService.ENTITY_GUIDANCE, str(session.id), payload)
        return payload

    def _participant_filter(self, user: User):
        if user.role == UserRole.STUDENT:
            return GuidanceSession.student_id == str(user.id)
        elif user.role == UserRole.LECTURER:
            return GuidanceSession.supervisor_id == str(user.id)
        else:
            raise AuthorizationError("Guidance sessions are only listed for students and lecturers")

    async def list_history(self, user: User, status: Optional[GuidanceStatus] = None) -> List[GuidanceSession]:
        """Most recent first"""
        query = select(GuidanceSession).where(self._participant_filter(user))
        if status is not None:
            query = query.where(GuidanceSession.status == status)
        query = query.order_by(GuidanceSession.created_at.desc(), GuidanceSession.id.desc())

        result = await self.db.execute(query)
        return list(result.unique().scalars().all())

    async def list_upcoming(self, user: User, now: Optional[datetime] = None) -> List[GuidanceSession]:
        """Accepted sessions not yet started, soonest first"""
        now = to_utc_naive(now) if now else datetime.utcnow()
        scheduled = func.coalesce(GuidanceSession.approved_date, GuidanceSession.requested_date)

        result = await self.db.execute(
            select(GuidanceSession)
            .where(
                and_(
                    self._participant_filter(user),
                    GuidanceSession.status == GuidanceStatus.ACCEPTED,
                    scheduled >= now,
                )
            )
            .order_by(scheduled, GuidanceSession.id)
        )
        return list(result.unique().scalars().all())

    async def pending_for_student(self, student: User) -> Optional[GuidanceSession]:
        return await self.gate.find_pending(self.db, str(student.id))

    async def activity(self, guidance_id: str, user: User) -> List[GuidanceActivityLog]:
        """Activity log, oldest first"""
        session = await self.get(guidance_id, user)
        result = await self.db.execute(
            select(GuidanceActivityLog)
            .where(GuidanceActivityLog.guidance_id == str(session.id))
            .order_by(GuidanceActivityLog.created_at, GuidanceActivityLog.id)
        )
        return list(result.scalars().all())

    # =====================================================
    # INPUT CHECKS
    # =====================================================

    @staticmethod
    def _resolve_duration(duration_minutes: Optional[int]) -> int:
        if duration_minutes is None:
            return settings.DEFAULT_GUIDANCE_DURATION
        if duration_minutes <= 0 or duration_minutes > settings.MAX_GUIDANCE_DURATION:
            raise ValidationError(
                f"Duration must be between 1 and {settings.MAX_GUIDANCE_DURATION} minutes",
                field="durationMinutes",
            )
        return duration_minutes

    @staticmethod
    def _resolve_date(value: Optional[datetime]) -> datetime:
        if value is None:
            raise ValidationError("Choose a date and time for the guidance session", field="requestedDate")
        value = to_utc_naive(value)
        if value < datetime.utcnow():
            raise ValidationError("Guidance date cannot be in the past", field="requestedDate")
        return value

    async def _student_thesis(self, student_id: str) -> Optional[Thesis]:
        result = await self.db.execute(
            select(Thesis)
            .where(Thesis.student_id == str(student_id))
            .order_by(Thesis.created_at.desc())
            .limit(1)
        )
        return result.unique().scalar_one_or_none()

    async def _check_supervisor(self, supervisor_id: str, thesis: Optional[Thesis]) -> User:
        result = await self.db.execute(select(User).where(User.id == str(supervisor_id)))
        supervisor = result.scalar_one_or_none()
        if supervisor is None:
            raise UserNotFoundError(str(supervisor_id))
        if supervisor.role != UserRole.LECTURER:
            raise ValidationError("The selected user is not a lecturer", field="supervisorId")
        if thesis is not None and str(supervisor.id) not in [str(s) for s in thesis.supervisor_ids()]:
            raise ValidationError("The selected lecturer does not supervise your thesis", field="supervisorId")
        return supervisor

    async def _check_milestone(self, milestone_id: str, thesis: Optional[Thesis]) -> None:
        milestone = await self.db.get(Milestone, str(milestone_id))
        if milestone is None or thesis is None or str(milestone.thesis_id) != str(thesis.id):
            raise ValidationError("The milestone does not belong to your thesis", field="milestoneId")

    # =====================================================
    # MUTATIONS
    # =====================================================

    def _record(self, session: GuidanceSession, transition: StateTransition,
                actor_id: str, notes: Optional[str] = None) -> None:
        self.db.add(GuidanceActivityLog(
            guidance_id=str(session.id),
            action=transition.action,
            from_status=transition.from_state,
            to_status=transition.to_state,
            actor_id=str(actor_id),
            notes=notes,
        ))

    async def _begin(self, guidance_id: str, user: User, action: GuidanceAction) -> GuidanceSession:
        """Load, authorize and validate; nothing has been written yet"""
        session = await self._load(guidance_id)
        set_guidance_id(str(session.id))
        closed = self.machine.is_terminal(GuidanceStatus(session.status))
        if closed and resolve_role(session, user.id) is not None:
            # Closed sessions refuse every action, whichever participant asks
            self.machine.check_action(session, action)
        authorize(session, user.id, action)
        self.machine.check_action(session, action)
        return session

    async def _lock_supervisor_schedule(self, supervisor_id: str) -> None:
        """
        Serialize bookings for one supervisor until this transaction ends.
        Must run before the availability check it protects.
        """
        if self.db.get_bind().dialect.name == "sqlite":
            # No row locks; any write takes the database write lock
            await self.db.execute(
                update(User)
                .where(User.id == str(supervisor_id))
                .values(updated_at=User.updated_at)
                .execution_options(synchronize_session=False)
            )
        else:
            await self.db.execute(
                select(User.id).where(User.id == str(supervisor_id)).with_for_update()
            )

    async def _finish(self, session: GuidanceSession, action: GuidanceAction, user: User,
                      notes: Optional[str] = None, **changes: Any) -> GuidanceSession:
        transition = self.machine.apply(session, action, actor_id=str(user.id), reason=notes)
        for field, value in changes.items():
            setattr(session, field, value)
        self._record(session, transition, user.id, notes)

        await self.db.flush()
        await self.cache.invalidate_guidance(str(session.id))
        self.cache.invalidate_after_commit(self.db, CacheService.ENTITY_GUIDANCE, str(session.id))
        return await self._load(session.id)

    async def create(
        self,
        student: User,
        supervisor_id: str,
        requested_date: datetime,
        duration_minutes: Optional[int] = None,
        student_notes: Optional[str] = None,
        milestone_id: Optional[str] = None,
        document_url: Optional[str] = None,
    ) -> GuidanceSession:
        """
        Create a new request in ``requested``.

        Raises:
            PendingRequestExistsError: the student already waits on a request
            ConflictError: the supervisor is busy at that time
            AvailabilityUnknownError: the supervisor's slots could not be read
        """
        if student.role != UserRole.STUDENT:
            raise AuthorizationError("Only students can request guidance")
        student_id = str(student.id)

        requested_at = self._resolve_date(requested_date)
        duration = self._resolve_duration(duration_minutes)

        thesis = await self._student_thesis(student_id)
        await self._check_supervisor(supervisor_id, thesis)
        if milestone_id:
            await self._check_milestone(milestone_id, thesis)

        await self.gate.ensure_can_create(self.db, student_id)
        await self._lock_supervisor_schedule(supervisor_id)
        await self.checker.ensure_available(str(supervisor_id), requested_at, duration)

        session = GuidanceSession(
            id=generate_uuid(),
            student_id=student_id,
            supervisor_id=str(supervisor_id),
            thesis_id=str(thesis.id) if thesis else None,
            milestone_id=str(milestone_id) if milestone_id else None,
            requested_date=requested_at,
            duration_minutes=duration,
            student_notes=student_notes,
            document_url=document_url,
        )
        transition = self.machine.initial(session, actor_id=student_id)
        self.db.add(session)

        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"[Guidance] Concurrent request for student {student_id} rejected by store")
            await self.gate.translate_integrity_error(self.db, student_id, e)
            raise

        self._record(session, transition, student_id, student_notes)
        await self.db.flush()
        set_guidance_id(str(session.id))
        logger.info(f"[Guidance] Created {session.id} for supervisor {supervisor_id} at {requested_at.isoformat()}")
        return await self._load(session.id)

    async def reschedule(
        self,
        guidance_id: str,
        student: User,
        requested_date: datetime,
        student_notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> GuidanceSession:
        session = await self._begin(guidance_id, student, GuidanceAction.RESCHEDULE)

        requested_at = self._resolve_date(requested_date)
        duration = (
            self._resolve_duration(duration_minutes)
            if duration_minutes is not None else session.duration_minutes
        )
        await self._lock_supervisor_schedule(session.supervisor_id)
        await self.checker.ensure_available(
            str(session.supervisor_id), requested_at, duration, exclude_guidance_id=str(session.id)
        )

        changes: Dict[str, Any] = {"requested_date": requested_at, "duration_minutes": duration}
        if student_notes is not None:
            changes["student_notes"] = student_notes
        return await self._finish(session, GuidanceAction.RESCHEDULE, student, **changes)

    async def update_notes(self, guidance_id: str, student: User, student_notes: str) -> GuidanceSession:
        session = await self._begin(guidance_id, student, GuidanceAction.UPDATE_NOTES)
        return await self._finish(session, GuidanceAction.UPDATE_NOTES, student, student_notes=student_notes)

    async def cancel(self, guidance_id: str, student: User, reason: str) -> GuidanceSession:
        session = await self._begin(guidance_id, student, GuidanceAction.CANCEL)
        return await self._finish(session, GuidanceAction.CANCEL, student, notes=reason, cancel_reason=reason)

    async def approve(self, guidance_id: str, supervisor: User, message: Optional[str] = None) -> GuidanceSession:
        session = await self._begin(guidance_id, supervisor, GuidanceAction.APPROVE)
        changes: Dict[str, Any] = {"approved_date": session.approved_date or session.requested_date}
        if message:
            changes["supervisor_feedback"] = message
        return await self._finish(session, GuidanceAction.APPROVE, supervisor, notes=message, **changes)

    async def reject(self, guidance_id: str, supervisor: User, message: Optional[str] = None) -> GuidanceSession:
        session = await self._begin(guidance_id, supervisor, GuidanceAction.REJECT)
        changes: Dict[str, Any] = {}
        if message:
            changes["supervisor_feedback"] = message
        return await self._finish(session, GuidanceAction.REJECT, supervisor, notes=message, **changes)

    async def submit_summary(self, guidance_id: str, student: User, session_summary: str,
                             action_items: str = "") -> GuidanceSession:
        session = await self._begin(guidance_id, student, GuidanceAction.SUBMIT_SUMMARY)
        if not session_summary or not session_summary.strip():
            raise ValidationError("Session summary is required", field="sessionSummary")
        return await self._finish(
            session,
            GuidanceAction.SUBMIT_SUMMARY,
            student,
            session_summary=session_summary,
            action_items=action_items,
        )

    async def approve_summary(self, guidance_id: str, supervisor: User,
                              message: Optional[str] = None) -> GuidanceSession:
        session = await self._begin(guidance_id, supervisor, GuidanceAction.APPROVE_SUMMARY)
        changes: Dict[str, Any] = {"completed_at": datetime.utcnow()}
        if message:
            changes["supervisor_feedback"] = message
        return await self._finish(session, GuidanceAction.APPROVE_SUMMARY, supervisor, notes=message, **changes)
