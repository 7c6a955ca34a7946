from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from salesdesk.models.account import Account
from salesdesk.models.chat import ChatMessage, ChatSession


class SessionDirectory(Protocol):
    """Durable chat sessions plus the per-session message log."""

    async def find_session(self, session_id: str) -> Optional[ChatSession]:
        ...

    async def create_session(self, session: ChatSession) -> ChatSession:
        """Insert; raises DuplicateSessionError if the session id already exists."""
        ...

    async def save_session(self, session: ChatSession) -> ChatSession:
        ...

    async def find_active_support_session(self, account_id: str) -> Optional[ChatSession]:
        ...

    async def count_active_assignments(self, agent_ids: Sequence[str]) -> Dict[str, int]:
        ...

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
        ...

    async def append_message(self, message: ChatMessage) -> ChatMessage:
        ...

    async def list_messages(self, session_id: str, *, page: int, limit: int) -> Tuple[List[ChatMessage], int]:
        ...

    async def count_unread(self, session_id: str, *, excluding_sender: str) -> int:
        ...

    async def mark_read(self, session_id: str, *, reader_id: str, read_at: datetime) -> int:
        ...

    async def purge_messages_before(self, cutoff: datetime) -> int:
        ...


class AccountDirectory(Protocol):
    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        ...

    async def find_accounts_by_role(self, roles: Sequence[str]) -> List[Account]:
        """Accounts holding any of ``roles``, oldest account first."""
        ...


class EventPublisher(Protocol):
    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        ...

    async def publish_to_room(
        self,
        room: str,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Optional[str] = None,
    ) -> None:
        ...
