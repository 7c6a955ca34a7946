from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.core.logging import get_logger
from salesdesk.models.chat import (
    ChatMessage,
    ChatReadReceipt,
    ChatParticipant,
    ChatSession,
    SessionCategory,
)
from salesdesk.services.chat.errors import DuplicateSessionError, StorageError
from salesdesk.services.chat.state import ACTIVE_STATUSES
from salesdesk.utils.pagination import page_offset
from salesdesk.utils.time import utcnow

logger = get_logger(__name__)


class SqlSessionDirectory:
    """Session directory and message store backed by the async SQLAlchemy session.

    Every write commits on its own; the engine never needs a transaction that
    spans more than one of these calls.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _storage(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Chat storage operation '{operation}' failed: {exc}")
            raise StorageError(f"{operation} failed") from exc

    # -- sessions -----------------------------------------------------------

    async def find_session(self, session_id: str) -> Optional[ChatSession]:
        async with self._storage("find_session"):
            result = await self.db.execute(
                select(ChatSession).where(ChatSession.session_id == session_id)
            )
            return result.scalar_one_or_none()

    async def create_session(self, session: ChatSession) -> ChatSession:
        async with self._storage("create_session"):
            self.db.add(session)
            try:
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                logger.info(f"Concurrent insert detected for chat session {session.session_id}")
                raise DuplicateSessionError(session.session_id) from exc
            return session

    async def save_session(self, session: ChatSession) -> ChatSession:
        async with self._storage("save_session"):
            session.updated_at = utcnow()
            self.db.add(session)
            await self.db.commit()
            return session

    async def find_active_support_session(self, account_id: str) -> Optional[ChatSession]:
        # Newest first: under a duplicate-creation race the latest session wins
        stmt = (
            select(ChatSession)
            .where(
                ChatSession.id.in_(self._participant_sessions(account_id)),
                ChatSession.category == SessionCategory.SUPPORT.value,
                ChatSession.status.in_(sorted(ACTIVE_STATUSES)),
            )
            .order_by(ChatSession.id.desc())
            .limit(1)
        )
        async with self._storage("find_active_support_session"):
            result = await self.db.execute(stmt)
            return result.scalars().first()

    async def count_active_assignments(self, agent_ids: Sequence[str]) -> Dict[str, int]:
        if not agent_ids:
            return {}
        stmt = (
            select(ChatSession.assigned_to, func.count(ChatSession.id))
            .where(
                ChatSession.assigned_to.in_(list(agent_ids)),
                ChatSession.status.in_(sorted(ACTIVE_STATUSES)),
            )
            .group_by(ChatSession.assigned_to)
        )
        async with self._storage("count_active_assignments"):
            result = await self.db.execute(stmt)
            return {str(agent_id): int(count) for agent_id, count in result.all()}

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
        conditions = []
        if statuses is not None:
            conditions.append(ChatSession.status.in_(sorted(set(statuses))))
        if assigned_to is not None:
            conditions.append(ChatSession.assigned_to == assigned_to)
        elif unassigned:
            conditions.append(ChatSession.assigned_to.is_(None))
        if participant_id is not None:
            conditions.append(ChatSession.id.in_(self._participant_sessions(participant_id)))
        if category is not None:
            conditions.append(ChatSession.category == category)

        count_query = select(func.count()).select_from(ChatSession).where(*conditions)
        query = (
            select(ChatSession)
            .where(*conditions)
            .order_by(ChatSession.last_message_at.desc(), ChatSession.id.desc())
        )
        if limit is not None:
            query = query.offset(page_offset(page, limit)).limit(limit)
        async with self._storage("list_sessions"):
            total = int((await self.db.execute(count_query)).scalar() or 0)
            result = await self.db.execute(query)
            return list(result.scalars().all()), total

    @staticmethod
    def _participant_sessions(account_id: str):
        return select(ChatParticipant.chat_session_id).where(ChatParticipant.account_id == account_id)

    # -- messages -----------------------------------------------------------

    async def append_message(self, message: ChatMessage) -> ChatMessage:
        async with self._storage("append_message"):
            self.db.add(message)
            await self.db.commit()
            return message

    async def list_messages(self, session_id: str, *, page: int, limit: int) -> Tuple[List[ChatMessage], int]:
        count_query = select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == session_id)
        query = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
            .offset(page_offset(page, limit))
            .limit(limit)
        )
        async with self._storage("list_messages"):
            total = int((await self.db.execute(count_query)).scalar() or 0)
            result = await self.db.execute(query)
            return list(result.scalars().all()), total

    async def count_unread(self, session_id: str, *, excluding_sender: str) -> int:
        stmt = (
            select(func.count())
            .select_from(ChatMessage)
            .where(
                ChatMessage.session_id == session_id,
                ChatMessage.sender_id != excluding_sender,
                ChatMessage.is_read.is_(False),
            )
        )
        async with self._storage("count_unread"):
            return int((await self.db.execute(stmt)).scalar() or 0)

    async def mark_read(self, session_id: str, *, reader_id: str, read_at: datetime) -> int:
        stmt = select(ChatMessage).where(
            ChatMessage.session_id == session_id,
            ChatMessage.sender_id != reader_id,
            ChatMessage.is_read.is_(False),
        )
        async with self._storage("mark_read"):
            result = await self.db.execute(stmt)
            messages = list(result.scalars().all())
            for message in messages:
                message.is_read = True
                message.read_by.append(ChatReadReceipt(account_id=reader_id, read_at=read_at))
            await self.db.commit()
            return len(messages)

    async def purge_messages_before(self, cutoff: datetime) -> int:
        expired_ids = select(ChatMessage.id).where(ChatMessage.timestamp < cutoff)
        async with self._storage("purge_messages_before"):
            await self.db.execute(
                delete(ChatReadReceipt)
                .where(ChatReadReceipt.message_id.in_(expired_ids))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(
                delete(ChatMessage)
                .where(ChatMessage.timestamp < cutoff)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            return int(result.rowcount or 0)
