"""
Session status state machine.
"""
from typing import Dict, FrozenSet, Optional

from ..exceptions import InvalidTransition
from ..models.session import SessionStatus


VALID_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.BOT: frozenset({SessionStatus.WAITING, SessionStatus.CLOSED}),
    SessionStatus.WAITING: frozenset({SessionStatus.AGENT, SessionStatus.CLOSED}),
    SessionStatus.AGENT: frozenset({SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def validate_transition(
    session_id: str,
    current: SessionStatus,
    target: SessionStatus,
    assigned_agent: Optional[str] = None
) -> None:
    """
    Raise InvalidTransition unless ``current -> target`` is allowed and the
    assigned agent argument matches the target status.
    """
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move session from '{current.value}' to '{target.value}'",
            session_id=session_id
        )

    if target == SessionStatus.AGENT and not assigned_agent:
        raise InvalidTransition(
            "An assigned agent is required to enter 'agent' status",
            session_id=session_id
        )

    if target != SessionStatus.AGENT and assigned_agent:
        raise InvalidTransition(
            f"Status '{target.value}' cannot carry an assigned agent",
            session_id=session_id
        )


__all__ = ['VALID_TRANSITIONS', 'can_transition', 'validate_transition']
