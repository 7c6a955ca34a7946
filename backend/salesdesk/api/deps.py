from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.db.session import AsyncSessionLocal
from salesdesk.dependencies import get_db
from salesdesk.services.accounts.service import Principal, SqlAccountDirectory, resolve_principal
from salesdesk.services.chat.directory import SqlSessionDirectory
from salesdesk.services.chat.engine import ChatSessionEngine
from salesdesk.services.chat.fanout import RealtimeFanout, realtime_fanout

# auto_error=False so a missing header surfaces as our own 401 payload
security = HTTPBearer(auto_error=False)

EngineScope = Callable[[], AsyncContextManager[ChatSessionEngine]]


def build_chat_engine(db: AsyncSession) -> ChatSessionEngine:
    return ChatSessionEngine(
        sessions=SqlSessionDirectory(db),
        accounts=SqlAccountDirectory(db),
        publisher=realtime_fanout,
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Dependency to get the authenticated caller from the bearer token.
    """
    token = credentials.credentials if credentials else None
    return await resolve_principal(token, SqlAccountDirectory(db))


async def get_chat_engine(db: AsyncSession = Depends(get_db)) -> ChatSessionEngine:
    return build_chat_engine(db)


@asynccontextmanager
async def chat_engine_scope() -> AsyncIterator[ChatSessionEngine]:
    """A fresh database session and engine for one unit of socket work."""
    async with AsyncSessionLocal() as db:
        yield build_chat_engine(db)


def get_chat_engine_scope() -> EngineScope:
    # Socket connections outlive a request, so they open a scope per frame
    return chat_engine_scope


def get_realtime_fanout() -> RealtimeFanout:
    return realtime_fanout
