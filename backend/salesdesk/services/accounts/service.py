from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.core.logging import get_logger
from salesdesk.core.security import account_id_from_claims, decode_access_token
from salesdesk.models.account import Account
from salesdesk.services.chat.errors import StorageError, Unauthenticated
from salesdesk.services.chat.roles import is_support_capable, normalize_role
from salesdesk.services.contracts import AccountDirectory

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller attached to every chat operation."""

    account_id: str
    role: str
    display_name: str = ""

    @property
    def support_capable(self) -> bool:
        return is_support_capable(self.role)

    @classmethod
    def from_account(cls, account: Account) -> "Principal":
        return cls(
            account_id=str(account.id),
            role=normalize_role(account.role),
            display_name=account.display_name,
        )


class SqlAccountDirectory:
    """Account lookups against the shared `account` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        try:
            result = await self.db.execute(select(Account).where(Account.id == account_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError("account lookup failed") from exc

    async def find_accounts_by_role(self, roles: Sequence[str]) -> List[Account]:
        if not roles:
            return []
        stmt = (
            select(Account)
            .where(Account.role.in_(list(roles)))
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError("account lookup failed") from exc


async def resolve_principal(token: Optional[str], accounts: AccountDirectory) -> Principal:
    """Validate a bearer token and load the account it names."""
    if not token:
        raise Unauthenticated("Not authorized, no token")

    claims = decode_access_token(token)
    if claims is None:
        raise Unauthenticated("Not authorized, token failed")

    account_id = account_id_from_claims(claims)
    if account_id is None:
        raise Unauthenticated("Invalid token payload")

    account = await accounts.find_account_by_id(account_id)
    if account is None:
        logger.info(f"Token for unknown account {account_id} rejected")
        raise Unauthenticated("User not found")
    return Principal.from_account(account)
