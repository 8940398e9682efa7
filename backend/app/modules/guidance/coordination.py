"""
Client-side coordination for the guidance request flow.

- ``AvailabilityCheckCoordinator``: every check gets a new token; a result
  whose token is no longer the latest is dropped, so only the check for
  the current date/duration ever reaches the draft.
- ``InFlightGuard``: refuses to start an operation that is still running.
- ``GuidanceRequestDraft``: what the user has filled in so far, and whether
  it may be submitted.
- ``ClientState``: the state a dashboard keeps between sessions, as an
  explicit object with a JSON round trip.
- ``GuidanceRequestFlow``: ties the above to a ``GuidanceApiClient``.
"""

import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, Optional, Set

from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import OperationInFlightError, ValidationError
from app.core.logging_config import logger
from app.modules.guidance.availability import (
    AvailabilityConflictChecker,
    AvailabilityStatus,
    ConflictResult,
    to_utc_naive,
)
from app.modules.guidance.client import GuidanceApiClient, HttpBusySlotFetcher
from app.modules.guidance.state_machine import Role


class AvailabilityCheckCoordinator:
    """Runs availability checks, keeping only the newest result"""

    def __init__(self, checker: AvailabilityConflictChecker):
        self.checker = checker
        self._tokens = itertools.count(1)
        self._latest = 0
        self._result_token = 0
        self.result: Optional[ConflictResult] = None

    @property
    def checking(self) -> bool:
        """A check was issued and its result has not arrived yet"""
        return self._latest != self._result_token

    def issue_token(self) -> int:
        self._latest = next(self._tokens)
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest

    async def check(self, supervisor_id: str, candidate_start: datetime,
                    duration_minutes: int) -> Optional[ConflictResult]:
        """
        Returns the result, or None when a newer check was issued while this
        one was waiting (the stale result is discarded).
        """
        token = self.issue_token()
        result = await self.checker.check(supervisor_id, candidate_start, duration_minutes)

        if not self.is_current(token):
            logger.debug(f"[Availability] Dropped stale check #{token} (latest #{self._latest})")
            return None

        self.result = result
        self._result_token = token
        return result

    def reset(self) -> None:
        """Invalidate any running check and forget the last result"""
        self._latest = 0
        self._result_token = 0
        self.result = None


class InFlightGuard:
    """One running instance per operation name"""

    def __init__(self):
        self._active: Set[str] = set()

    def is_busy(self, operation: str) -> bool:
        return operation in self._active

    @asynccontextmanager
    async def hold(self, operation: str) -> AsyncIterator[None]:
        if operation in self._active:
            raise OperationInFlightError(operation)
        self._active.add(operation)
        try:
            yield
        finally:
            self._active.discard(operation)


class DraftState(BaseModel):
    """Persisted part of a draft"""
    supervisor_id: Optional[str] = None
    requested_date: Optional[datetime] = None
    duration_minutes: int = settings.DEFAULT_GUIDANCE_DURATION
    student_notes: Optional[str] = None
    milestone_id: Optional[str] = None


@dataclass
class GuidanceRequestDraft:
    supervisor_id: Optional[str] = None
    requested_date: Optional[datetime] = None
    duration_minutes: int = settings.DEFAULT_GUIDANCE_DURATION
    student_notes: Optional[str] = None
    milestone_id: Optional[str] = None
    availability: Optional[ConflictResult] = None
    checking: bool = False

    def _availability_matches(self) -> bool:
        """The stored result was computed for the current date and duration"""
        if self.availability is None or self.requested_date is None:
            return False
        start = to_utc_naive(self.requested_date)
        return (
            self.availability.candidate_start == start
            and self.availability.candidate_end == start + timedelta(minutes=self.duration_minutes)
        )

    def blocking_reason(self) -> Optional[str]:
        """Why submission is disabled right now, or None"""
        if not self.supervisor_id:
            return "Choose a supervisor"
        if self.requested_date is None:
            return "Choose a date and time for the guidance session"
        if self.checking:
            return "Checking supervisor availability..."
        if not self._availability_matches():
            return "Supervisor availability has not been checked yet"
        if self.availability.status is not AvailabilityStatus.CLEAR:
            return self.availability.message
        return None

    @property
    def can_submit(self) -> bool:
        return self.blocking_reason() is None

    def validate(self) -> None:
        """Raise the error matching ``blocking_reason``"""
        if not self.supervisor_id:
            raise ValidationError("Choose a supervisor", field="supervisorId")
        if self.requested_date is None:
            raise ValidationError("Choose a date and time for the guidance session", field="requestedDate")
        if self.checking or not self._availability_matches():
            raise ValidationError("Supervisor availability has not been checked yet", field="requestedDate")
        self.availability.raise_for_status()

    def to_state(self) -> DraftState:
        return DraftState(
            supervisor_id=self.supervisor_id,
            requested_date=self.requested_date,
            duration_minutes=self.duration_minutes,
            student_notes=self.student_notes,
            milestone_id=self.milestone_id,
        )

    @classmethod
    def from_state(cls, state: DraftState) -> "GuidanceRequestDraft":
        return cls(**state.model_dump())


class ClientState(BaseModel):
    """Explicit state of a guidance dashboard; serialised at session boundaries"""
    user_id: Optional[str] = None
    role: Optional[Role] = None
    thesis_id: Optional[str] = None
    active_guidance_id: Optional[str] = None
    default_duration: int = settings.DEFAULT_GUIDANCE_DURATION
    draft: Optional[DraftState] = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "ClientState":
        return cls.model_validate_json(raw)


class GuidanceRequestFlow:
    """Student side of "request guidance": edit draft, re-check, submit once"""

    CREATE_OPERATION = "create_guidance"

    def __init__(self, client: GuidanceApiClient, state: ClientState,
                 guard: Optional[InFlightGuard] = None,
                 checker: Optional[AvailabilityConflictChecker] = None):
        self.client = client
        self.state = state
        self.guard = guard or InFlightGuard()
        self.coordinator = AvailabilityCheckCoordinator(
            checker or AvailabilityConflictChecker(HttpBusySlotFetcher(client))
        )
        if state.draft is not None:
            self.draft = GuidanceRequestDraft.from_state(state.draft)
        else:
            self.draft = GuidanceRequestDraft(duration_minutes=state.default_duration)

    async def update(self, **fields: Any) -> Optional[ConflictResult]:
        """Change draft fields; re-checks availability when date, duration or supervisor changed"""
        for name, value in fields.items():
            if name not in DraftState.model_fields:
                raise ValueError(f"Unknown draft field: {name}")
            setattr(self.draft, name, value)
        self.state.draft = self.draft.to_state()

        if not ({"supervisor_id", "requested_date", "duration_minutes"} & fields.keys()):
            return self.draft.availability
        if not self.draft.supervisor_id or self.draft.requested_date is None:
            self.coordinator.reset()
            self.draft.availability = None
            self.draft.checking = False
            return None

        self.draft.checking = True
        result = await self.coordinator.check(
            self.draft.supervisor_id, self.draft.requested_date, self.draft.duration_minutes
        )
        if result is not None:
            self.draft.availability = result
            self.draft.checking = False
        return result

    async def submit(self) -> Dict[str, Any]:
        self.draft.validate()
        async with self.guard.hold(self.CREATE_OPERATION):
            guidance = await self.client.create_guidance(
                supervisor_id=self.draft.supervisor_id,
                requested_date=self.draft.requested_date,
                duration_minutes=self.draft.duration_minutes,
                student_notes=self.draft.student_notes,
                milestone_id=self.draft.milestone_id,
            )

        # Only after the server confirmed the create
        self.state.active_guidance_id = guidance["id"]
        self.state.draft = None
        self.draft = GuidanceRequestDraft(duration_minutes=self.state.default_duration)
        self.coordinator.reset()
        return guidance
