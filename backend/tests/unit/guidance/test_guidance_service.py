"""
Unit Tests for GuidanceService
Tests for: create, reschedule, cancel, approve/reject, summary flow, reads
"""
import asyncio
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy import func, select

from app.core.config import settings
from app.core.database import commit_session
from app.core.exceptions import (
    AuthorizationError,
    AvailabilityUnknownError,
    ConflictError,
    GuidanceNotFoundError,
    InvalidTransitionError,
    PendingRequestExistsError,
    UserNotFoundError,
    ValidationError,
)
from app.models.guidance import GuidanceActivityLog, GuidanceSession, GuidanceStatus
from app.modules.guidance.availability import AvailabilityConflictChecker
from app.modules.guidance.pending_gate import PendingRequestGate, guidance_request_gate
from app.modules.guidance.service import GuidanceService
from app.services.cache_service import CacheService
from tests.factories import InMemoryRedis, at


class OpenGate(PendingRequestGate):
    """Gate whose application check always passes, leaving only the store"""

    async def ensure_can_create(self, db, student_id):
        return None


class BrokenFetcher:
    async def fetch(self, supervisor_id, window_start, window_end):
        raise ConnectionError("availability service down")


@pytest.fixture
def service(db_session) -> GuidanceService:
    return GuidanceService(db_session)


async def count_sessions(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(GuidanceSession))


class TestCreate:
    """Test requesting a session"""

    @pytest.mark.asyncio
    async def test_create_starts_requested(self, service, student, supervisor, thesis):
        """Test a new request is stored as requested with defaults"""
        session = await service.create(student, supervisor.id, at(10), student_notes="Chapter 2 draft")

        assert session.status == GuidanceStatus.REQUESTED
        assert session.duration_minutes == 60
        assert session.thesis_id == thesis.id
        assert session.student.full_name == "Budi Santoso"
        assert session.approved_date is None

    @pytest.mark.asyncio
    async def test_create_records_activity(self, service, db_session, student, supervisor, thesis):
        """Test the create is logged"""
        session = await service.create(student, supervisor.id, at(10))

        logs = await service.activity(session.id, student)

        assert [(log.action, log.from_status, log.to_status) for log in logs] == [
            ("create", None, "requested")
        ]

    @pytest.mark.asyncio
    async def test_second_request_blocked_while_pending(self, service, db_session, student, supervisor,
                                                        second_supervisor, thesis):
        """Test a pending request to A blocks a request to B"""
        first = await service.create(student, supervisor.id, at(10))

        with pytest.raises(PendingRequestExistsError) as exc_info:
            await service.create(student, second_supervisor.id, at(14))

        assert exc_info.value.details["pending"]["id"] == str(first.id)
        assert exc_info.value.details["pending"]["supervisorName"] == "Dr. Andi Wijaya"
        assert await count_sessions(db_session) == 1

    @pytest.mark.asyncio
    async def test_new_request_allowed_after_cancel(self, service, student, supervisor, thesis):
        """Test cancelling frees the student's slot in the pool"""
        first = await service.create(student, supervisor.id, at(10))
        await service.cancel(first.id, student, "Changed topic")

        second = await service.create(student, supervisor.id, at(10))

        assert second.status == GuidanceStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_conflicting_time_rejected(self, service, db_session, student, other_student, supervisor,
                                             thesis, other_thesis):
        """Test a slot taken by another student is refused"""
        await service.create(other_student, supervisor.id, at(10))

        with pytest.raises(ConflictError) as exc_info:
            await service.create(student, supervisor.id, at(9, 30), duration_minutes=60)

        assert "Siti Rahma" in exc_info.value.message
        assert await count_sessions(db_session) == 1

    @pytest.mark.asyncio
    async def test_back_to_back_allowed(self, service, student, other_student, supervisor, thesis, other_thesis):
        """Test a meeting starting when another ends"""
        await service.create(other_student, supervisor.id, at(10))

        session = await service.create(student, supervisor.id, at(11), duration_minutes=30)

        assert session.requested_date == at(11)

    @pytest.mark.asyncio
    async def test_simultaneous_requests_for_one_slot(self, session_factory, db_session, student, other_student,
                                                      supervisor, thesis, other_thesis):
        """Test two requests racing for the same time book it once"""
        async def request(user):
            async with session_factory() as db:
                try:
                    created = await GuidanceService(db).create(user, supervisor.id, at(10))
                    await commit_session(db)
                    return created.id
                except Exception:
                    await db.rollback()
                    raise

        results = await asyncio.gather(request(student), request(other_student), return_exceptions=True)

        assert len([r for r in results if isinstance(r, ConflictError)]) == 1
        assert await count_sessions(db_session) == 1

    @pytest.mark.asyncio
    async def test_unknown_availability_blocks_create(self, db_session, student, supervisor, thesis):
        """Test a failed availability fetch stops the create"""
        service = GuidanceService(db_session, checker=AvailabilityConflictChecker(BrokenFetcher()))

        with pytest.raises(AvailabilityUnknownError):
            await service.create(student, supervisor.id, at(10))

        assert await count_sessions(db_session) == 0

    @pytest.mark.asyncio
    async def test_store_race_translated(self, db_session, student, supervisor, second_supervisor, thesis):
        """Test a create slipping past the gate still gets PendingRequestExistsError"""
        first = await GuidanceService(db_session).create(student, supervisor.id, at(10))
        first_id = str(first.id)
        await db_session.commit()

        racing_gate = OpenGate(
            model=guidance_request_gate.model,
            pending_status=guidance_request_gate.pending_status,
            label=guidance_request_gate.label,
            describe=guidance_request_gate.describe,
            unique_index=guidance_request_gate.unique_index,
        )
        racer = GuidanceService(db_session, gate=racing_gate)

        with pytest.raises(PendingRequestExistsError) as exc_info:
            await racer.create(student, second_supervisor.id, at(14))

        assert exc_info.value.details["pending"]["id"] == first_id

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, service, student, supervisor, thesis):
        """Test a date in the past is a validation error"""
        with pytest.raises(ValidationError) as exc_info:
            await service.create(student, supervisor.id, datetime(2000, 1, 1, 10, 0))

        assert exc_info.value.details["field"] == "requestedDate"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [0, -15, 10_000])
    async def test_duration_out_of_range(self, service, student, supervisor, thesis, duration):
        """Test durations outside 1..MAX are refused"""
        with pytest.raises(ValidationError) as exc_info:
            await service.create(student, supervisor.id, at(10), duration_minutes=duration)

        assert exc_info.value.details["field"] == "durationMinutes"

    @pytest.mark.asyncio
    async def test_supervisor_must_supervise_thesis(self, service, student, outsider_lecturer, thesis):
        """Test only the thesis supervisors can be asked"""
        with pytest.raises(ValidationError):
            await service.create(student, outsider_lecturer.id, at(10))

    @pytest.mark.asyncio
    async def test_unknown_supervisor(self, service, student, thesis):
        """Test a missing supervisor id"""
        with pytest.raises(UserNotFoundError):
            await service.create(student, "00000000-0000-0000-0000-000000000000", at(10))

    @pytest.mark.asyncio
    async def test_lecturer_cannot_request(self, service, supervisor, second_supervisor):
        """Test only students create requests"""
        with pytest.raises(AuthorizationError):
            await service.create(supervisor, second_supervisor.id, at(10))

    @pytest.mark.asyncio
    async def test_milestone_must_belong_to_thesis(self, service, student, supervisor, thesis):
        """Test linking a foreign milestone is refused"""
        with pytest.raises(ValidationError) as exc_info:
            await service.create(student, supervisor.id, at(10),
                                 milestone_id="00000000-0000-0000-0000-000000000000")

        assert exc_info.value.details["field"] == "milestoneId"

    @pytest.mark.asyncio
    async def test_milestone_link(self, service, student, supervisor, thesis, milestones):
        """Test a session can be tied to one of the thesis milestones"""
        session = await service.create(student, supervisor.id, at(10), milestone_id=milestones[2].id)

        assert session.milestone_id == milestones[2].id


class TestReschedule:
    """Test moving a pending request"""

    @pytest.mark.asyncio
    async def test_reschedule_changes_date(self, service, student, supervisor, thesis):
        """Test date, duration and notes change while status stays"""
        session = await service.create(student, supervisor.id, at(10))

        moved = await service.reschedule(session.id, student, at(13), student_notes="Moved", duration_minutes=90)

        assert moved.status == GuidanceStatus.REQUESTED
        assert moved.requested_date == at(13)
        assert moved.duration_minutes == 90
        assert moved.student_notes == "Moved"

    @pytest.mark.asyncio
    async def test_reschedule_overlapping_own_slot(self, service, student, supervisor, thesis):
        """Test the session does not conflict with itself"""
        session = await service.create(student, supervisor.id, at(10))

        moved = await service.reschedule(session.id, student, at(10, 30))

        assert moved.requested_date == at(10, 30)

    @pytest.mark.asyncio
    async def test_reschedule_into_conflict(self, service, student, other_student, supervisor, thesis,
                                            other_thesis):
        """Test moving onto another student's slot is refused and nothing changes"""
        await service.create(other_student, supervisor.id, at(14))
        session = await service.create(student, supervisor.id, at(10))

        with pytest.raises(ConflictError):
            await service.reschedule(session.id, student, at(14, 30))

        reloaded = await service.get(session.id, student)
        assert reloaded.requested_date == at(10)

    @pytest.mark.asyncio
    async def test_reschedule_after_approval_refused(self, service, student, supervisor, thesis):
        """Test only pending requests move"""
        session = await service.create(student, supervisor.id, at(10))
        await service.approve(session.id, supervisor)

        with pytest.raises(InvalidTransitionError):
            await service.reschedule(session.id, student, at(13))


class TestDecisions:
    """Test supervisor approve / reject and student cancel"""

    @pytest.mark.asyncio
    async def test_approve_sets_approved_date(self, service, student, supervisor, thesis):
        """Test approval fixes the meeting at the requested time"""
        session = await service.create(student, supervisor.id, at(10))

        approved = await service.approve(session.id, supervisor, "See you then")

        assert approved.status == GuidanceStatus.ACCEPTED
        assert approved.approved_date == at(10)
        assert approved.supervisor_feedback == "See you then"

    @pytest.mark.asyncio
    async def test_reject_with_message(self, service, student, supervisor, thesis):
        """Test rejection stores the reason"""
        session = await service.create(student, supervisor.id, at(10))

        rejected = await service.reject(session.id, supervisor, "Revise chapter 1 first")

        assert rejected.status == GuidanceStatus.REJECTED
        assert rejected.supervisor_feedback == "Revise chapter 1 first"

    @pytest.mark.asyncio
    async def test_other_supervisor_cannot_approve(self, service, student, supervisor, second_supervisor, thesis):
        """Test only the addressed supervisor decides"""
        session = await service.create(student, supervisor.id, at(10))

        with pytest.raises(AuthorizationError):
            await service.approve(session.id, second_supervisor)

    @pytest.mark.asyncio
    async def test_cancel_stores_reason(self, service, student, supervisor, thesis):
        """Test cancelling records why"""
        session = await service.create(student, supervisor.id, at(10))

        cancelled = await service.cancel(session.id, student, "Sick")

        assert cancelled.status == GuidanceStatus.CANCELLED
        assert cancelled.cancel_reason == "Sick"

    @pytest.mark.asyncio
    async def test_approve_summary_on_rejected_is_refused(self, service, student, supervisor, thesis):
        """Test approve-summary on a rejected session leaves it untouched"""
        session = await service.create(student, supervisor.id, at(10))
        await service.reject(session.id, supervisor, "No")

        with pytest.raises(InvalidTransitionError):
            await service.approve_summary(session.id, supervisor, "Good work")

        reloaded = await service.get(session.id, supervisor)
        assert reloaded.status == GuidanceStatus.REJECTED
        assert reloaded.supervisor_feedback == "No"
        assert reloaded.completed_at is None

    @pytest.mark.asyncio
    async def test_closed_session_refuses_before_role_check(self, service, student, supervisor,
                                                            second_supervisor, thesis):
        """Test a participant acting on a rejected session gets InvalidTransition, an outsider still 403"""
        session = await service.create(student, supervisor.id, at(10))
        await service.reject(session.id, supervisor, "No")

        with pytest.raises(InvalidTransitionError):
            await service.approve(session.id, student)
        with pytest.raises(InvalidTransitionError):
            await service.cancel(session.id, supervisor, "late cancel")
        with pytest.raises(AuthorizationError):
            await service.approve(session.id, second_supervisor)

    @pytest.mark.asyncio
    async def test_missing_session(self, service, student):
        """Test an unknown id"""
        with pytest.raises(GuidanceNotFoundError):
            await service.cancel("00000000-0000-0000-0000-000000000000", student, "x")


class TestSummaryFlow:
    """Test summary submission and sign-off"""

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, service, student, supervisor, thesis):
        """Test requested → accepted → summary_pending → completed"""
        session = await service.create(student, supervisor.id, at(10))
        await service.approve(session.id, supervisor)

        pending = await service.submit_summary(session.id, student, "Discussed methodology", "Fix sampling")
        assert pending.status == GuidanceStatus.SUMMARY_PENDING
        assert pending.action_items == "Fix sampling"

        done = await service.approve_summary(session.id, supervisor)
        assert done.status == GuidanceStatus.COMPLETED
        assert done.completed_at is not None

        logs = await service.activity(session.id, supervisor)
        assert [log.action for log in logs] == ["create", "approve", "submit_summary", "approve_summary"]

    @pytest.mark.asyncio
    async def test_empty_summary_refused(self, service, student, supervisor, thesis):
        """Test a blank summary is a validation error and the status stays"""
        session = await service.create(student, supervisor.id, at(10))
        await service.approve(session.id, supervisor)

        with pytest.raises(ValidationError):
            await service.submit_summary(session.id, student, "   ")

        assert (await service.get(session.id, student)).status == GuidanceStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_summary_before_approval_refused(self, service, student, supervisor, thesis):
        """Test the summary needs an accepted session"""
        session = await service.create(student, supervisor.id, at(10))

        with pytest.raises(InvalidTransitionError):
            await service.submit_summary(session.id, student, "Too early")

    @pytest.mark.asyncio
    async def test_completed_session_is_immutable(self, service, student, supervisor, thesis):
        """Test nothing is accepted once completed"""
        session = await service.create(student, supervisor.id, at(10))
        await service.approve(session.id, supervisor)
        await service.submit_summary(session.id, student, "Summary")
        await service.approve_summary(session.id, supervisor)

        with pytest.raises(InvalidTransitionError):
            await service.update_notes(session.id, student, "late edit")
        with pytest.raises(InvalidTransitionError):
            await service.cancel(session.id, student, "late cancel")


class TestReads:
    """Test history, upcoming and detail reads"""

    @pytest.mark.asyncio
    async def test_history_for_both_sides(self, service, student, supervisor, thesis):
        """Test the student and the supervisor both see the session"""
        session = await service.create(student, supervisor.id, at(10))

        assert [s.id for s in await service.list_history(student)] == [session.id]
        assert [s.id for s in await service.list_history(supervisor)] == [session.id]
        assert await service.list_history(supervisor, GuidanceStatus.COMPLETED) == []

    @pytest.mark.asyncio
    async def test_upcoming_only_accepted(self, service, student, other_student, supervisor, thesis, other_thesis):
        """Test pending requests are not upcoming"""
        accepted = await service.create(student, supervisor.id, at(10))
        await service.approve(accepted.id, supervisor)
        await service.create(other_student, supervisor.id, at(14))

        upcoming = await service.list_upcoming(supervisor)

        assert [s.id for s in upcoming] == [accepted.id]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, service, student, other_student, supervisor, thesis):
        """Test non-participants are refused"""
        session = await service.create(student, supervisor.id, at(10))

        with pytest.raises(AuthorizationError):
            await service.get(session.id, other_student)

    @pytest.mark.asyncio
    async def test_detail_read_through_cache(self, db_session, student, supervisor, thesis):
        """Test the detail is cached on miss and invalidated by mutations"""
        cache = MagicMock(spec=CacheService)
        cache.get = AsyncMock(return_value=None)
        cache.set = AsyncMock(return_value=True)
        cache.invalidate_guidance = AsyncMock(return_value=True)
        service = GuidanceService(db_session, cache=cache)

        session = await service.create(student, supervisor.id, at(10))
        payload = await service.get_detail(session.id, student)

        assert payload["studentId"] == str(student.id)
        cache.set.assert_awaited_once_with(CacheService.ENTITY_GUIDANCE, str(session.id), payload)

        await service.approve(session.id, supervisor)
        cache.invalidate_guidance.assert_awaited_with(str(session.id))

    @pytest.mark.asyncio
    async def test_detail_cached_before_commit_dropped_after_commit(self, session_factory, db_session, student,
                                                                    supervisor, thesis):
        """Test a copy read between flush and commit is not served afterwards"""
        cache = CacheService(client=InMemoryRedis())
        created = await GuidanceService(db_session, cache=cache).create(student, supervisor.id, at(10))
        guidance_id = str(created.id)
        await db_session.commit()

        with patch.object(settings, "CACHE_ENABLED", True):
            async with session_factory() as writer_db, session_factory() as reader_db:
                await GuidanceService(writer_db, cache=cache).approve(guidance_id, supervisor)
                stale = await GuidanceService(reader_db, cache=cache).get_detail(guidance_id, student)

                await commit_session(writer_db, cache)

                fresh = await GuidanceService(reader_db, cache=cache).get_detail(guidance_id, student)

        assert stale["status"] == "requested"
        assert fresh["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_mutations_queue_cache_drop(self, db_session, student, supervisor, thesis):
        """Test a transition queues its session for a post-commit drop"""
        service = GuidanceService(db_session, cache=CacheService(client=InMemoryRedis()))
        session = await service.create(student, supervisor.id, at(10))
        await service.approve(session.id, supervisor)

        assert db_session.info[CacheService.PENDING_INFO_KEY] == {(CacheService.ENTITY_GUIDANCE, str(session.id))}

    @pytest.mark.asyncio
    async def test_cached_detail_still_checks_participants(self, db_session, other_student):
        """Test a cache hit is not served to an outsider"""
        cache = MagicMock(spec=CacheService)
        cache.get = AsyncMock(return_value={"id": "g-1", "studentId": "s-1", "supervisorId": "l-1"})
        service = GuidanceService(db_session, cache=cache)

        with pytest.raises(AuthorizationError):
            await service.get_detail("g-1", other_student)

    @pytest.mark.asyncio
    async def test_activity_logs_are_append_only(self, service, db_session, student, supervisor, thesis):
        """Test every transition adds exactly one row"""
        session = await service.create(student, supervisor.id, at(10))
        await service.update_notes(session.id, student, "Bring printed draft")

        total = await db_session.scalar(select(func.count()).select_from(GuidanceActivityLog))
        assert total == 2
