from __future__ import annotations

import pytest

pytest.importorskip("sqlalchemy")

from salesdesk.services.chat.errors import InvalidInput, InvalidTransition
from salesdesk.services.chat.roles import is_support_capable, normalize_role
from salesdesk.services.chat.state import (
    SessionAction,
    can_transition,
    is_active,
    is_read_only,
    next_status,
    parse_status,
)


@pytest.mark.parametrize(
    "status,action,expected",
    [
        ("open", SessionAction.ASSIGN, "assigned"),
        ("reopened", SessionAction.ASSIGN, "assigned"),
        ("assigned", SessionAction.ASSIGN, "assigned"),
        ("resolved", SessionAction.ASSIGN, "resolved"),
        ("assigned", SessionAction.UNASSIGN, "open"),
        ("reopened", SessionAction.UNASSIGN, "open"),
        ("open", SessionAction.RESOLVE, "resolved"),
        ("assigned", SessionAction.RESOLVE, "resolved"),
        ("resolved", SessionAction.REOPEN, "reopened"),
    ],
)
def test_legal_transitions(status: str, action: SessionAction, expected: str) -> None:
    assert can_transition(status, action)
    assert next_status(status, action) == expected


@pytest.mark.parametrize(
    "status,action,message",
    [
        ("resolved", SessionAction.RESOLVE, "Chat is already resolved"),
        ("resolved", SessionAction.UNASSIGN, "Resolved chats cannot be unassigned"),
        ("open", SessionAction.REOPEN, "Only resolved chats can be reopened"),
        ("assigned", SessionAction.REOPEN, "Only resolved chats can be reopened"),
        ("closed", SessionAction.REOPEN, "Only resolved chats can be reopened"),
        ("closed", SessionAction.ASSIGN, "Cannot assign a chat that is closed"),
    ],
)
def test_illegal_transitions(status: str, action: SessionAction, message: str) -> None:
    assert not can_transition(status, action)
    with pytest.raises(InvalidTransition, match=message):
        next_status(status, action)


def test_closed_is_terminal() -> None:
    assert not any(can_transition("closed", action) for action in SessionAction)
    assert is_read_only("closed")
    assert is_read_only("resolved")
    assert not is_active("resolved")
    assert is_active("reopened")


def test_parse_status() -> None:
    assert parse_status(" Resolved ") == "resolved"
    with pytest.raises(InvalidInput):
        parse_status("archived")


def test_support_capability_is_decided_by_role_only() -> None:
    assert is_support_capable("admin")
    assert is_support_capable("SUPER_ADMIN")
    assert not is_support_capable("team_head")
    assert not is_support_capable("salesperson")
    assert not is_support_capable(None)
    assert normalize_role(None) == "customer"
