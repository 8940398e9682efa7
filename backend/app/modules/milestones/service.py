"""
Milestone Service

    not_started ─▶ in_progress ─▶ pending_review ─▶ completed
                                        │
                    revision_needed ◀───┘
                    (back to in_progress or pending_review)

Students move their own milestones forward (progress, submit for review);
a thesis supervisor validates or sends them back. Completed milestones
are immutable.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AuthorizationError,
    MilestoneNotFoundError,
    ThesisNotFoundError,
    ValidationError,
)
from app.core.logging_config import logger
from app.models.milestone import Milestone, MilestoneStatus, MilestoneTemplate
from app.models.thesis import Thesis
from app.models.user import User
from app.modules.guidance.state_machine import LifecycleStateMachine, Role
from app.modules.milestones.aggregator import MilestoneProgressAggregator, milestone_aggregator
from app.schemas.milestone import serialize_milestone
from app.services.cache_service import CacheService, cache_service


MILESTONE_TRANSITIONS: Dict[MilestoneStatus, Set[MilestoneStatus]] = {
    MilestoneStatus.NOT_STARTED: {MilestoneStatus.IN_PROGRESS},
    MilestoneStatus.IN_PROGRESS: {MilestoneStatus.IN_PROGRESS, MilestoneStatus.PENDING_REVIEW},
    MilestoneStatus.REVISION_NEEDED: {MilestoneStatus.IN_PROGRESS, MilestoneStatus.PENDING_REVIEW},
    MilestoneStatus.PENDING_REVIEW: {MilestoneStatus.COMPLETED, MilestoneStatus.REVISION_NEEDED},
    MilestoneStatus.COMPLETED: set(),
}

milestone_state_machine = LifecycleStateMachine("milestone", MILESTONE_TRANSITIONS)


def resolve_thesis_role(thesis: Thesis, user_id: str) -> Optional[Role]:
    if str(thesis.student_id) == str(user_id):
        return Role.STUDENT
    if str(user_id) in [str(s) for s in thesis.supervisor_ids()]:
        return Role.SUPERVISOR
    return None


class MilestoneService:
    """Milestone reads and lifecycle operations"""

    def __init__(
        self,
        db: AsyncSession,
        aggregator: MilestoneProgressAggregator = milestone_aggregator,
        machine: LifecycleStateMachine = milestone_state_machine,
        cache: CacheService = cache_service,
    ):
        self.db = db
        self.aggregator = aggregator
        self.machine = machine
        self.cache = cache

    # =====================================================
    # ACCESS
    # =====================================================

    async def _thesis(self, thesis_id: str) -> Thesis:
        thesis = await self.db.get(Thesis, str(thesis_id))
        if thesis is None:
            raise ThesisNotFoundError(str(thesis_id))
        return thesis

    async def _thesis_for(self, thesis_id: str, user: User, required: Optional[Role] = None) -> Thesis:
        thesis = await self._thesis(thesis_id)
        role = resolve_thesis_role(thesis, user.id)
        if role is None:
            raise AuthorizationError("You are not involved in this thesis")
        if required is not None and role is not required:
            if required is Role.STUDENT:
                raise AuthorizationError("Only the thesis student can do this")
            elif required is Role.SUPERVISOR:
                raise AuthorizationError("Only a thesis supervisor can do this")
            else:
                raise AssertionError(f"Unhandled role: {required}")
        return thesis

    async def _load(self, milestone_id: str) -> Milestone:
        result = await self.db.execute(
            select(Milestone)
            .where(Milestone.id == str(milestone_id))
            .execution_options(populate_existing=True)
        )
        milestone = result.scalar_one_or_none()
        if milestone is None:
            raise MilestoneNotFoundError(str(milestone_id))
        return milestone

    # =====================================================
    # READS
    # =====================================================

    async def list_for_thesis(self, thesis_id: str, user: User) -> List[Milestone]:
        thesis = await self._thesis_for(thesis_id, user)
        return await self._milestones(thesis.id)

    async def _milestones(self, thesis_id: str) -> List[Milestone]:
        result = await self.db.execute(
            select(Milestone)
            .where(Milestone.thesis_id == str(thesis_id))
            .order_by(Milestone.order_index, Milestone.created_at, Milestone.id)
        )
        return list(result.scalars().all())

    async def thesis_overview(self, thesis_id: str, user: User) -> Dict[str, Any]:
        """``{"milestones": [...], "progress": {...}}``, cached per thesis"""
        thesis = await self._thesis_for(thesis_id, user)

        cached = await self.cache.get(CacheService.ENTITY_THESIS_MILESTONES, str(thesis.id))
        if cached is not None:
            return cached

        milestones = await self._milestones(thesis.id)
        payload = {
            "milestones": [serialize_milestone(m) for m in milestones],
            "progress": self.aggregator.summarize(milestones).to_dict(),
        }
        await self.cache.set(CacheService.ENTITY_THESIS_MILESTONES, str(thesis.id), payload)
        return payload

    async def next_for_thesis(self, thesis_id: str, user: User) -> Optional[Milestone]:
        milestones = await self.list_for_thesis(thesis_id, user)
        return self.aggregator.next_milestone(milestones)

    async def get(self, milestone_id: str, user: User) -> Milestone:
        milestone = await self._load(milestone_id)
        await self._thesis_for(milestone.thesis_id, user)
        return milestone

    async def list_templates(self) -> List[MilestoneTemplate]:
        result = await self.db.execute(
            select(MilestoneTemplate)
            .where(MilestoneTemplate.is_active.is_(True))
            .order_by(MilestoneTemplate.order_index, MilestoneTemplate.name)
        )
        return list(result.scalars().all())

    # =====================================================
    # MUTATIONS
    # =====================================================

    async def create_from_templates(self, thesis_id: str, user: User, template_ids: List[str]) -> List[Milestone]:
        """One milestone per template, appended after existing ones in template order"""
        thesis = await self._thesis_for(thesis_id, user)

        wanted = list(dict.fromkeys(str(t) for t in template_ids))
        if not wanted:
            raise ValidationError("Select at least one template", field="templateIds")

        result = await self.db.execute(
            select(MilestoneTemplate).where(
                MilestoneTemplate.id.in_(wanted),
                MilestoneTemplate.is_active.is_(True),
            )
        )
        templates = list(result.scalars().all())
        missing = set(wanted) - {str(t.id) for t in templates}
        if missing:
            raise ValidationError(f"Unknown milestone templates: {', '.join(sorted(missing))}", field="templateIds")

        base = await self.db.scalar(
            select(func.coalesce(func.max(Milestone.order_index), 0)).where(Milestone.thesis_id == str(thesis.id))
        )
        templates.sort(key=lambda t: (t.order_index, t.name))

        for position, template in enumerate(templates, start=1):
            self.db.add(Milestone(
                thesis_id=str(thesis.id),
                template_id=str(template.id),
                title=template.name,
                description=template.description,
                order_index=(base or 0) + position,
                status=MilestoneStatus.NOT_STARTED,
                progress_percentage=0,
            ))
        await self.db.flush()
        await self._drop_cached(thesis.id)

        logger.info(f"[Milestones] Created {len(templates)} milestones from templates for thesis {thesis.id}")
        return await self._milestones(thesis.id)

    async def _drop_cached(self, thesis_id: str) -> None:
        """Now, and again once the transaction commits"""
        await self.cache.invalidate_thesis_milestones(str(thesis_id))
        self.cache.invalidate_after_commit(self.db, CacheService.ENTITY_THESIS_MILESTONES, str(thesis_id))

    async def _move(self, milestone: Milestone, target: MilestoneStatus, action: str,
                    user: User, **changes: Any) -> Milestone:
        current = MilestoneStatus(milestone.status)
        self.machine.validate(current, target, action)

        milestone.status = target
        for field, value in changes.items():
            setattr(milestone, field, value)
        logger.log_transition("milestone", str(milestone.id), current.value, target.value, str(user.id),
                              action=action)

        await self.db.flush()
        await self._drop_cached(milestone.thesis_id)
        return await self._load(milestone.id)

    async def update_progress(self, milestone_id: str, student: User, progress_percentage: int,
                              student_notes: Optional[str] = None) -> Milestone:
        milestone = await self._load(milestone_id)
        await self._thesis_for(milestone.thesis_id, student, required=Role.STUDENT)
        if not 0 <= progress_percentage <= 100:
            raise ValidationError("Progress must be between 0 and 100", field="progressPercentage")

        changes: Dict[str, Any] = {"progress_percentage": progress_percentage}
        if milestone.started_at is None:
            changes["started_at"] = datetime.utcnow()
        if student_notes is not None:
            changes["student_notes"] = student_notes
        return await self._move(milestone, MilestoneStatus.IN_PROGRESS, "update_progress", student, **changes)

    async def submit_for_review(self, milestone_id: str, student: User, student_notes: Optional[str] = None,
                                evidence_url: Optional[str] = None) -> Milestone:
        milestone = await self._load(milestone_id)
        await self._thesis_for(milestone.thesis_id, student, required=Role.STUDENT)

        changes: Dict[str, Any] = {}
        if student_notes is not None:
            changes["student_notes"] = student_notes
        if evidence_url is not None:
            changes["evidence_url"] = evidence_url
        return await self._move(milestone, MilestoneStatus.PENDING_REVIEW, "submit_for_review", student, **changes)

    async def validate(self, milestone_id: str, supervisor: User,
                       supervisor_notes: Optional[str] = None) -> Milestone:
        milestone = await self._load(milestone_id)
        await self._thesis_for(milestone.thesis_id, supervisor, required=Role.SUPERVISOR)

        now = datetime.utcnow()
        changes: Dict[str, Any] = {
            "progress_percentage": 100,
            "validated_by": str(supervisor.id),
            "validated_at": now,
            "completed_at": now,
        }
        if supervisor_notes is not None:
            changes["supervisor_notes"] = supervisor_notes
        return await self._move(milestone, MilestoneStatus.COMPLETED, "validate", supervisor, **changes)

    async def request_revision(self, milestone_id: str, supervisor: User, supervisor_notes: str) -> Milestone:
        milestone = await self._load(milestone_id)
        await self._thesis_for(milestone.thesis_id, supervisor, required=Role.SUPERVISOR)
        if not supervisor_notes or not supervisor_notes.strip():
            raise ValidationError("Revision notes are required", field="supervisorNotes")

        return await self._move(
            milestone, MilestoneStatus.REVISION_NEEDED, "request_revision", supervisor,
            supervisor_notes=supervisor_notes,
        )
