from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

pytest.importorskip("sqlalchemy")
pytest.importorskip("pydantic_settings")

from salesdesk.models.account import Account
from salesdesk.models.chat import ChatMessage, ChatReadReceipt, ChatSession
from salesdesk.services.accounts.service import Principal
from salesdesk.services.chat.errors import DuplicateSessionError
from salesdesk.services.chat.state import ACTIVE_STATUSES
from salesdesk.utils.pagination import page_offset


BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class InMemorySessionDirectory:
    def __init__(self):
        self.sessions: Dict[str, ChatSession] = {}
        self.messages: List[ChatMessage] = []
        self._session_ids = itertools.count(1)
        self._message_ids = itertools.count(1)

    async def find_session(self, session_id: str) -> Optional[ChatSession]:
        return self.sessions.get(session_id)

    async def create_session(self, session: ChatSession) -> ChatSession:
        if session.session_id in self.sessions:
            raise DuplicateSessionError(session.session_id)
        session.id = next(self._session_ids)
        self.sessions[session.session_id] = session
        return session

    async def save_session(self, session: ChatSession) -> ChatSession:
        self.sessions[session.session_id] = session
        return session

    async def find_active_support_session(self, account_id: str) -> Optional[ChatSession]:
        candidates = [
            s
            for s in self.sessions.values()
            if s.category == "support" and s.status in ACTIVE_STATUSES and s.has_participant(account_id)
        ]
        return max(candidates, key=lambda s: s.id, default=None)

    async def count_active_assignments(self, agent_ids: Sequence[str]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for session in self.sessions.values():
            if session.assigned_to in agent_ids and session.status in ACTIVE_STATUSES:
                counts[session.assigned_to] = counts.get(session.assigned_to, 0) + 1
        return counts

    async def list_sessions(
        self,
        *,
        statuses: Optional[Iterable[str]] = None,
        assigned_to: Optional[str] = None,
        unassigned: bool = False,
        participant_id: Optional[str] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = 20,
    ) -> Tuple[List[ChatSession], int]:
        wanted = set(statuses) if statuses is not None else None
        items = []
        for session in self.sessions.values():
            if wanted is not None and session.status not in wanted:
                continue
            if assigned_to is not None and session.assigned_to != assigned_to:
                continue
            if assigned_to is None and unassigned and session.assigned_to is not None:
                continue
            if participant_id is not None and not session.has_participant(participant_id):
                continue
            if category is not None and session.category != category:
                continue
            items.append(session)
        items.sort(key=lambda s: (s.last_message_at, s.id), reverse=True)
        total = len(items)
        if limit is not None:
            start = page_offset(page, limit)
            items = items[start:start + limit]
        return items, total

    async def append_message(self, message: ChatMessage) -> ChatMessage:
        message.id = next(self._message_ids)
        self.messages.append(message)
        return message

    def messages_for(self, session_id: str) -> List[ChatMessage]:
        return [m for m in self.messages if m.session_id == session_id]

    async def list_messages(self, session_id: str, *, page: int, limit: int) -> Tuple[List[ChatMessage], int]:
        items = sorted(self.messages_for(session_id), key=lambda m: (m.timestamp, m.id))
        start = page_offset(page, limit)
        return items[start:start + limit], len(items)

    async def count_unread(self, session_id: str, *, excluding_sender: str) -> int:
        return sum(
            1 for m in self.messages_for(session_id) if m.sender_id != excluding_sender and not m.is_read
        )

    async def mark_read(self, session_id: str, *, reader_id: str, read_at: datetime) -> int:
        marked = 0
        for message in self.messages_for(session_id):
            if message.sender_id != reader_id and not message.is_read:
                message.is_read = True
                message.read_by.append(ChatReadReceipt(account_id=reader_id, read_at=read_at))
                marked += 1
        return marked

    async def purge_messages_before(self, cutoff: datetime) -> int:
        kept = [m for m in self.messages if m.timestamp >= cutoff]
        deleted = len(self.messages) - len(kept)
        self.messages = kept
        return deleted


class InMemoryAccountDirectory:
    def __init__(self, accounts: Iterable[Account] = ()):
        self.accounts: Dict[str, Account] = {a.id: a for a in accounts}

    def add(self, account: Account) -> Account:
        self.accounts[account.id] = account
        return account

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    async def find_accounts_by_role(self, roles: Sequence[str]) -> List[Account]:
        matches = [a for a in self.accounts.values() if a.role in roles]
        return sorted(matches, key=lambda a: (a.created_at, a.id))


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.broadcasts: List[Tuple[str, Dict[str, Any]]] = []
        self.room_events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket layer down")
        self.broadcasts.append((event, payload))

    async def publish_to_room(
        self,
        room: str,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Optional[str] = None,
    ) -> None:
        if self.fail:
            raise RuntimeError("socket layer down")
        self.room_events.append((room, event, payload))

    def events(self) -> List[str]:
        return [event for event, _ in self.broadcasts]


def make_account(account_id: str, role: str = "customer", *, first: str = "", last: str = "", minutes: int = 0) -> Account:
    return Account(
        id=account_id,
        first_name=first or None,
        last_name=last or None,
        email=f"{account_id}@example.com",
        role=role,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def sessions() -> InMemorySessionDirectory:
    return InMemorySessionDirectory()


@pytest.fixture
def accounts() -> InMemoryAccountDirectory:
    return InMemoryAccountDirectory(
        [
            make_account("u1", first="Una", last="User"),
            make_account("u2", first="Dee", last="Two"),
            make_account("u3", first="Tri", last="Three"),
            make_account("admin1", "admin", first="Ada", last="Min", minutes=1),
            make_account("seller1", "salesperson", first="Sal", last="Person"),
        ]
    )


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def principal_for(accounts):
    def _principal(account_id: str) -> Principal:
        return Principal.from_account(accounts.accounts[account_id])

    return _principal


@pytest.fixture
def engine(sessions, accounts, publisher, clock):
    from salesdesk.services.chat.engine import ChatSessionEngine

    return ChatSessionEngine(sessions, accounts, publisher=publisher, clock=clock)
