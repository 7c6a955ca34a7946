from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from salesdesk.db.session import AsyncSessionLocal

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session."""
    async with AsyncSessionLocal() as session:
        yield session
