from __future__ import annotations

from datetime import timedelta

import pytest

pytest.importorskip("sqlalchemy")
pytest.importorskip("pydantic_settings")

from conftest import BASE_TIME
from salesdesk.core.config import settings
from salesdesk.models.chat import ChatMessage
from salesdesk.services.chat.retention import MessageRetention


def _message(age_days: int) -> ChatMessage:
    return ChatMessage(
        session_id="chat_u1_u2",
        sender_id="u1",
        sender_role="customer",
        message=f"{age_days} days old",
        message_type="text",
        timestamp=BASE_TIME - timedelta(days=age_days),
        is_read=False,
        read_by=[],
    )


@pytest.mark.asyncio
async def test_purge_keeps_messages_inside_the_window(sessions) -> None:
    for age in (1, 89, 91, 365):
        await sessions.append_message(_message(age))

    deleted = await MessageRetention(sessions, retention_days=90).purge_expired(now=BASE_TIME)

    assert deleted == 2
    assert [m.message for m in sessions.messages] == ["1 days old", "89 days old"]


def test_retention_window_defaults_to_settings(sessions, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "CHAT_MESSAGE_RETENTION_DAYS", 30)

    retention = MessageRetention(sessions, clock=lambda: BASE_TIME)

    assert retention.cutoff() == BASE_TIME - timedelta(days=30)
