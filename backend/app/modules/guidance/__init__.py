"""
Guidance Module - the guidance session lifecycle engine

Components:
- state_machine: legal status moves and who may trigger them
- availability: busy slots and the conflict checker
- pending_gate: one outstanding request per student
- service: the lifecycle operations against the store
- client / coordination: REST client and client-side request flow

Usage:
    from app.modules.guidance import GuidanceService

    service = GuidanceService(db)
    session = await service.create(student, supervisor_id, requested_date)
"""

from app.modules.guidance.state_machine import (
    GuidanceAction,
    GuidanceStateMachine,
    LifecycleStateMachine,
    Role,
    guidance_state_machine,
)
from app.modules.guidance.availability import (
    AvailabilityConflictChecker,
    AvailabilityStatus,
    BusySlot,
    ConflictResult,
    DatabaseBusySlotFetcher,
)
from app.modules.guidance.pending_gate import (
    PendingRequestGate,
    guidance_request_gate,
    supervisor2_request_gate,
)
from app.modules.guidance.service import GuidanceService

__all__ = [
    "GuidanceAction",
    "GuidanceStateMachine",
    "LifecycleStateMachine",
    "Role",
    "guidance_state_machine",
    "AvailabilityConflictChecker",
    "AvailabilityStatus",
    "BusySlot",
    "ConflictResult",
    "DatabaseBusySlotFetcher",
    "PendingRequestGate",
    "guidance_request_gate",
    "supervisor2_request_gate",
    "GuidanceService",
]
