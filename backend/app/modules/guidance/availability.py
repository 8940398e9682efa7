"""
Supervisor availability checking.

A candidate meeting ``[start, start + duration)`` is checked against the
supervisor's busy slots for the local calendar day containing ``start``.
Overlap is half-open: a meeting that ends exactly when a slot starts (or
starts exactly when it ends) does not conflict.

The checker is side-effect free, so callers may run it as often as the
candidate date or duration changes. Slots come from a ``BusySlotFetcher``:

- ``DatabaseBusySlotFetcher`` reads the guidance sessions table (server side,
  used by GuidanceService for the authoritative check)
- ``HttpBusySlotFetcher`` (in ``client.py``) calls the availability endpoint

Any fetch failure yields ``AvailabilityStatus.UNKNOWN``; callers must treat
that as "do not submit".
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AvailabilityUnknownError, ConflictError
from app.core.logging_config import logger
from app.models.guidance import GuidanceSession, GuidanceStatus


# Sessions in these states hold their time slot
BUSY_STATUSES = (
    GuidanceStatus.REQUESTED,
    GuidanceStatus.ACCEPTED,
    GuidanceStatus.SUMMARY_PENDING,
    GuidanceStatus.COMPLETED,
)

GENERIC_STUDENT_LABEL = "another student"


# ==================== Time helpers ====================

def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_utc_naive(value: datetime) -> datetime:
    """Normalise to naive UTC (storage format). Naive input is taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_local(value: datetime) -> datetime:
    """Naive-UTC (or aware) datetime → aware datetime in the configured zone"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(local_zone())


def day_window(candidate: datetime) -> Tuple[datetime, datetime]:
    """
    00:00:00 .. 23:59:59 of the local day containing ``candidate``,
    returned as naive UTC.
    """
    local_day = to_local(candidate).date()
    zone = local_zone()
    start = datetime.combine(local_day, time.min, tzinfo=zone)
    end = datetime.combine(local_day, time(23, 59, 59), tzinfo=zone)
    return to_utc_naive(start), to_utc_naive(end)


def format_slot_range(start: datetime, end: datetime) -> str:
    local_start = to_local(start)
    local_end = to_local(end)
    return f"{local_start.strftime('%d %b %Y %H:%M')} - {local_end.strftime('%H:%M')}"


# ==================== Types ====================

@dataclass(frozen=True)
class BusySlot:
    """An existing commitment blocking the supervisor (naive UTC bounds)"""
    start: datetime
    end: datetime
    student_name: Optional[str] = None
    guidance_id: Optional[str] = None

    def overlaps(self, candidate_start: datetime, candidate_end: datetime) -> bool:
        return slots_overlap(candidate_start, candidate_end, self.start, self.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "studentName": self.student_name,
            "guidanceId": self.guidance_id,
        }


class AvailabilityStatus(str, Enum):
    CLEAR = "clear"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConflictResult:
    status: AvailabilityStatus
    candidate_start: datetime
    candidate_end: datetime
    conflict: Optional[BusySlot] = None
    message: Optional[str] = None

    @property
    def is_clear(self) -> bool:
        return self.status is AvailabilityStatus.CLEAR

    def raise_for_status(self) -> None:
        """Turn a non-clear result into the matching exception"""
        if self.status is AvailabilityStatus.CONFLICT:
            raise ConflictError(self.message, slot=self.conflict.to_dict() if self.conflict else None)
        if self.status is AvailabilityStatus.UNKNOWN:
            raise AvailabilityUnknownError(self.message or AvailabilityUnknownError().message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "candidateStart": self.candidate_start.isoformat(),
            "candidateEnd": self.candidate_end.isoformat(),
            "conflict": self.conflict.to_dict() if self.conflict else None,
            "message": self.message,
        }


class BusySlotFetcher(Protocol):
    async def fetch(self, supervisor_id: str, window_start: datetime, window_end: datetime) -> List[BusySlot]:
        ...


# ==================== Pure overlap logic ====================

def slots_overlap(candidate_start: datetime, candidate_end: datetime,
                  slot_start: datetime, slot_end: datetime) -> bool:
    """Half-open interval overlap; touching endpoints are not a conflict"""
    return candidate_start < slot_end and candidate_end > slot_start


def find_first_conflict(slots: Iterable[BusySlot], candidate_start: datetime,
                        candidate_end: datetime) -> Optional[BusySlot]:
    """First slot (in fetch order) overlapping the candidate"""
    for slot in slots:
        if slot.overlaps(candidate_start, candidate_end):
            return slot
    return None


def conflict_message(slot: BusySlot) -> str:
    label = slot.student_name or GENERIC_STUDENT_LABEL
    return f"Schedule conflict with {label} on {format_slot_range(slot.start, slot.end)}. Choose another time."


# ==================== Checker ====================

class AvailabilityConflictChecker:
    """Determines whether a candidate meeting time collides with a busy slot"""

    def __init__(self, fetcher: BusySlotFetcher):
        self.fetcher = fetcher

    async def check(
        self,
        supervisor_id: str,
        candidate_start: datetime,
        duration_minutes: int,
        exclude_guidance_id: Optional[str] = None,
    ) -> ConflictResult:
        candidate_start = to_utc_naive(candidate_start)
        candidate_end = candidate_start + timedelta(minutes=duration_minutes)
        window_start, window_end = day_window(candidate_start)
        # A late meeting running past midnight must see the next morning too
        window_end = max(window_end, candidate_end)

        try:
            slots = await self.fetcher.fetch(supervisor_id, window_start, window_end)
        except Exception as e:
            # Fail closed: an unverified slot must never read as free
            logger.warning(f"[Availability] Busy-slot fetch failed for supervisor {supervisor_id}: {e}")
            return ConflictResult(
                status=AvailabilityStatus.UNKNOWN,
                candidate_start=candidate_start,
                candidate_end=candidate_end,
                message=getattr(e, "message", None) or AvailabilityUnknownError().message,
            )

        if exclude_guidance_id:
            slots = [s for s in slots if s.guidance_id != str(exclude_guidance_id)]

        conflict = find_first_conflict(slots, candidate_start, candidate_end)
        if conflict is None:
            return ConflictResult(
                status=AvailabilityStatus.CLEAR,
                candidate_start=candidate_start,
                candidate_end=candidate_end,
            )

        return ConflictResult(
            status=AvailabilityStatus.CONFLICT,
            candidate_start=candidate_start,
            candidate_end=candidate_end,
            conflict=conflict,
            message=conflict_message(conflict),
        )

    async def ensure_available(self, supervisor_id: str, candidate_start: datetime,
                               duration_minutes: int, exclude_guidance_id: Optional[str] = None) -> ConflictResult:
        """Like check(), but raises ConflictError / AvailabilityUnknownError"""
        result = await self.check(supervisor_id, candidate_start, duration_minutes, exclude_guidance_id)
        result.raise_for_status()
        return result


# ==================== Server-side fetcher ====================

class DatabaseBusySlotFetcher:
    """Busy slots derived from the supervisor's live guidance sessions"""

    # Sessions starting this long before the window can still reach into it
    LOOKBEHIND = timedelta(minutes=settings.MAX_GUIDANCE_DURATION)

    def __init__(self, db: AsyncSession):
        self.db = db

    async def fetch(self, supervisor_id: str, window_start: datetime, window_end: datetime) -> List[BusySlot]:
        window_start = to_utc_naive(window_start)
        window_end = to_utc_naive(window_end)
        earliest = window_start - self.LOOKBEHIND

        scheduled = func.coalesce(GuidanceSession.approved_date, GuidanceSession.requested_date)
        result = await self.db.execute(
            select(GuidanceSession)
            .where(
                and_(
                    GuidanceSession.supervisor_id == str(supervisor_id),
                    GuidanceSession.status.in_(BUSY_STATUSES),
                    scheduled >= earliest,
                    scheduled <= window_end,
                )
            )
            .order_by(scheduled, GuidanceSession.id)
        )
        sessions: Sequence[GuidanceSession] = result.unique().scalars().all()

        slots = []
        for session in sessions:
            start = session.scheduled_at
            end = session.scheduled_end
            if not slots_overlap(window_start, window_end, start, end):
                continue
            slots.append(BusySlot(
                start=start,
                end=end,
                student_name=session.student.display_name if session.student else None,
                guidance_id=str(session.id),
            ))
        return slots
