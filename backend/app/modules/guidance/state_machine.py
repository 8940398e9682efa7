"""
State Machine for Guidance Sessions

Owns the legal moves of a guidance session's ``status``:

┌──────────────────────────────────────────────────────────────────┐
│  requested ──approve──▶ accepted ──summary──▶ summary_pending    │
│   │  ▲  │                                        │               │
│   │  └──┘ reschedule                       approve-summary       │
│   ├──reject──▶ rejected                          ▼               │
│   └──cancel──▶ cancelled                     completed           │
└──────────────────────────────────────────────────────────────────┘

Terminal states (completed, rejected, cancelled) accept nothing.
Transitions are validated before anything on the entity is touched, so a
refused transition never leaves a partial write behind.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Set

from app.core.exceptions import AuthorizationError, InvalidTransitionError
from app.core.logging_config import logger
from app.models.guidance import GuidanceSession, GuidanceStatus


class Role(str, Enum):
    """Role of the caller relative to one specific session"""
    STUDENT = "student"
    SUPERVISOR = "supervisor"


class GuidanceAction(str, Enum):
    CREATE = "create"
    RESCHEDULE = "reschedule"
    UPDATE_NOTES = "update_notes"
    CANCEL = "cancel"
    APPROVE = "approve"
    REJECT = "reject"
    SUBMIT_SUMMARY = "submit_summary"
    APPROVE_SUMMARY = "approve_summary"


GUIDANCE_TRANSITIONS: Dict[GuidanceStatus, Set[GuidanceStatus]] = {
    GuidanceStatus.REQUESTED: {
        GuidanceStatus.REQUESTED,  # reschedule: date/notes change, status stays
        GuidanceStatus.ACCEPTED,
        GuidanceStatus.REJECTED,
        GuidanceStatus.CANCELLED,
    },
    GuidanceStatus.ACCEPTED: {GuidanceStatus.SUMMARY_PENDING},
    GuidanceStatus.SUMMARY_PENDING: {GuidanceStatus.COMPLETED},
    GuidanceStatus.COMPLETED: set(),
    GuidanceStatus.REJECTED: set(),
    GuidanceStatus.CANCELLED: set(),
}

TERMINAL_STATES: FrozenSet[GuidanceStatus] = frozenset(
    status for status, targets in GUIDANCE_TRANSITIONS.items() if not targets
)


@dataclass(frozen=True)
class ActionRule:
    role: Role
    sources: FrozenSet[GuidanceStatus]
    target: Optional[GuidanceStatus]  # None: status untouched (content edit only)


ACTION_RULES: Dict[GuidanceAction, ActionRule] = {
    GuidanceAction.RESCHEDULE: ActionRule(
        Role.STUDENT, frozenset({GuidanceStatus.REQUESTED}), GuidanceStatus.REQUESTED
    ),
    GuidanceAction.UPDATE_NOTES: ActionRule(
        Role.STUDENT, frozenset({GuidanceStatus.REQUESTED, GuidanceStatus.ACCEPTED}), None
    ),
    GuidanceAction.CANCEL: ActionRule(
        Role.STUDENT, frozenset({GuidanceStatus.REQUESTED}), GuidanceStatus.CANCELLED
    ),
    GuidanceAction.APPROVE: ActionRule(
        Role.SUPERVISOR, frozenset({GuidanceStatus.REQUESTED}), GuidanceStatus.ACCEPTED
    ),
    GuidanceAction.REJECT: ActionRule(
        Role.SUPERVISOR, frozenset({GuidanceStatus.REQUESTED}), GuidanceStatus.REJECTED
    ),
    GuidanceAction.SUBMIT_SUMMARY: ActionRule(
        Role.STUDENT, frozenset({GuidanceStatus.ACCEPTED}), GuidanceStatus.SUMMARY_PENDING
    ),
    GuidanceAction.APPROVE_SUMMARY: ActionRule(
        Role.SUPERVISOR, frozenset({GuidanceStatus.SUMMARY_PENDING}), GuidanceStatus.COMPLETED
    ),
}

# CREATE has no source state; the session is born "requested" by the student.
ACTION_ROLES: Dict[GuidanceAction, Role] = {
    GuidanceAction.CREATE: Role.STUDENT,
    **{action: rule.role for action, rule in ACTION_RULES.items()},
}


@dataclass
class StateTransition:
    """Record of a state transition"""
    from_state: Optional[str]
    to_state: str
    action: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "metadata": self.metadata
        }


class LifecycleStateMachine:
    """
    Validates transitions of persisted entities against an allowed-transition table.

    The machine holds no entity state of its own: the current state is read
    from the entity being moved, which keeps a single source of truth in the
    database row.
    """

    def __init__(self, name: str, transitions: Mapping[Enum, Set[Enum]]):
        self.name = name
        self._transitions = transitions

    def can_transition(self, current: Enum, target: Enum) -> bool:
        return target in self._transitions.get(current, set())

    def is_terminal(self, state: Enum) -> bool:
        return not self._transitions.get(state)

    def validate(
        self,
        current: Enum,
        target: Enum,
        action: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> StateTransition:
        """Return the transition record, or raise InvalidTransitionError"""
        if not self.can_transition(current, target):
            allowed = self._transitions.get(current, set())
            logger.warning(
                f"[{self.name}] Invalid transition: {current.value} → {target.value}"
                + (f" ({action})" if action else "")
                + f". Allowed: {sorted(s.value for s in allowed)}"
            )
            raise InvalidTransitionError(self.name, current.value, target.value, action)

        return StateTransition(
            from_state=current.value,
            to_state=target.value,
            action=action,
            reason=reason,
        )


class GuidanceStateMachine(LifecycleStateMachine):
    """Transition rules for guidance sessions, keyed by caller action"""

    def __init__(self):
        super().__init__("guidance", GUIDANCE_TRANSITIONS)

    def check_action(self, session: GuidanceSession, action: GuidanceAction) -> ActionRule:
        """Raise InvalidTransitionError unless ``action`` is legal from the session's status"""
        rule = ACTION_RULES[action]
        current = GuidanceStatus(session.status)

        if current not in rule.sources:
            target = rule.target.value if rule.target else current.value
            logger.warning(
                f"[{self.name}] Refused {action.value} on session {session.id} in '{current.value}'"
            )
            raise InvalidTransitionError(self.name, current.value, target, action.value)

        if rule.target is not None:
            # The action table must agree with the graph
            self.validate(current, rule.target, action.value)
        return rule

    def apply(
        self,
        session: GuidanceSession,
        action: GuidanceAction,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> StateTransition:
        """
        Move ``session`` according to ``action``.

        This is the only place where ``GuidanceSession.status`` is assigned
        after creation. Callers must mutate other fields only after this
        returns.
        """
        rule = self.check_action(session, action)
        current = GuidanceStatus(session.status)
        target = rule.target or current

        transition = StateTransition(
            from_state=current.value,
            to_state=target.value,
            action=action.value,
            reason=reason,
            metadata={"actor_id": actor_id} if actor_id else {},
        )
        session.status = target

        logger.log_transition("guidance", str(session.id), current.value, target.value, actor_id,
                              action=action.value)
        return transition

    def initial(self, session: GuidanceSession, actor_id: Optional[str] = None) -> StateTransition:
        """Stamp a brand-new session as requested"""
        session.status = GuidanceStatus.REQUESTED
        logger.log_transition("guidance", str(session.id or "new"), None,
                              GuidanceStatus.REQUESTED.value, actor_id, action=GuidanceAction.CREATE.value)
        return StateTransition(
            from_state=None,
            to_state=GuidanceStatus.REQUESTED.value,
            action=GuidanceAction.CREATE.value,
            metadata={"actor_id": actor_id} if actor_id else {},
        )


def resolve_role(session: GuidanceSession, user_id: str) -> Optional[Role]:
    """Role of ``user_id`` on ``session``, or None for an outsider"""
    if str(session.student_id) == str(user_id):
        return Role.STUDENT
    if str(session.supervisor_id) == str(user_id):
        return Role.SUPERVISOR
    return None


def authorize(session: GuidanceSession, user_id: str, action: GuidanceAction) -> Role:
    """Ensure the caller holds the role ``action`` requires on this session"""
    role = resolve_role(session, user_id)
    required = ACTION_ROLES[action]

    if role is None:
        raise AuthorizationError("You are not a participant of this guidance session")
    if role is not required:
        if required is Role.STUDENT:
            raise AuthorizationError("Only the requesting student can do this")
        elif required is Role.SUPERVISOR:
            raise AuthorizationError("Only the assigned supervisor can do this")
        else:
            raise AssertionError(f"Unhandled role: {required}")
    return role


guidance_state_machine = GuidanceStateMachine()
