from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
import enum

from salesdesk.db.base import Base

class AccountRole(str, enum.Enum):
    CUSTOMER = "customer"
    SALESPERSON = "salesperson"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    TEAM_HEAD = "team_head"

class Account(Base):
    """Read-only view of the accounts owned by the user service."""

    __tablename__ = "account"

    id = Column(String(64), primary_key=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    role = Column(String(20), nullable=False, default=AccountRole.CUSTOMER.value, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.id
