"""Session status state machine.

All status changes made by the engine go through :func:`next_status`, so the
legal transitions live in exactly one table.
"""
from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Tuple

from salesdesk.models.chat import SessionStatus
from salesdesk.services.chat.errors import InvalidInput, InvalidTransition


class SessionAction(str, enum.Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    RESOLVE = "resolve"
    REOPEN = "reopen"


ACTIVE_STATUSES: FrozenSet[str] = frozenset(
    {SessionStatus.OPEN.value, SessionStatus.ASSIGNED.value, SessionStatus.REOPENED.value}
)
READ_ONLY_STATUSES: FrozenSet[str] = frozenset(
    {SessionStatus.RESOLVED.value, SessionStatus.CLOSED.value}
)
ALL_STATUSES: FrozenSet[str] = frozenset(s.value for s in SessionStatus)

_S = SessionStatus
_A = SessionAction

TRANSITIONS: Dict[Tuple[str, str], str] = {
    (_S.OPEN.value, _A.ASSIGN.value): _S.ASSIGNED.value,
    (_S.REOPENED.value, _A.ASSIGN.value): _S.ASSIGNED.value,
    (_S.ASSIGNED.value, _A.ASSIGN.value): _S.ASSIGNED.value,
    # assignment is recorded on a resolved chat but it stays read-only
    (_S.RESOLVED.value, _A.ASSIGN.value): _S.RESOLVED.value,
    (_S.ASSIGNED.value, _A.UNASSIGN.value): _S.OPEN.value,
    (_S.OPEN.value, _A.UNASSIGN.value): _S.OPEN.value,
    (_S.REOPENED.value, _A.UNASSIGN.value): _S.OPEN.value,
    (_S.OPEN.value, _A.RESOLVE.value): _S.RESOLVED.value,
    (_S.ASSIGNED.value, _A.RESOLVE.value): _S.RESOLVED.value,
    (_S.REOPENED.value, _A.RESOLVE.value): _S.RESOLVED.value,
    (_S.RESOLVED.value, _A.REOPEN.value): _S.REOPENED.value,
}

_REJECTIONS: Dict[Tuple[str, str], str] = {
    (_S.RESOLVED.value, _A.RESOLVE.value): "Chat is already resolved",
    (_S.RESOLVED.value, _A.UNASSIGN.value): "Resolved chats cannot be unassigned",
}


def is_active(status: str) -> bool:
    return status in ACTIVE_STATUSES


def is_read_only(status: str) -> bool:
    return status in READ_ONLY_STATUSES


def parse_status(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in ALL_STATUSES:
        raise InvalidInput(f"Unknown chat status '{value}'")
    return normalized


def can_transition(status: str, action: SessionAction) -> bool:
    return (status, SessionAction(action).value) in TRANSITIONS


def next_status(status: str, action: SessionAction) -> str:
    """Return the status reached by applying ``action``; raise if illegal."""
    key = (status, SessionAction(action).value)
    try:
        return TRANSITIONS[key]
    except KeyError:
        pass
    if key in _REJECTIONS:
        raise InvalidTransition(_REJECTIONS[key])
    if key[1] == _A.REOPEN.value:
        raise InvalidTransition("Only resolved chats can be reopened")
    raise InvalidTransition(f"Cannot {key[1]} a chat that is {status}")
