from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from salesdesk.db.base import Base

# SQLite only auto-increments INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

class SessionStatus(str, enum.Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    REOPENED = "reopened"
    CLOSED = "closed"

class SessionPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class SessionCategory(str, enum.Enum):
    GENERAL = "general"
    SALES = "sales"
    TECHNICAL = "technical"
    BILLING = "billing"
    SUPPORT = "support"

class MessageType(str, enum.Enum):
    TEXT = "text"
    SYSTEM = "system"
    BOT = "bot"

class ChatSession(Base):
    __tablename__ = "chat_session"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    session_id = Column(String(160), unique=True, nullable=False, index=True)

    status = Column(String(20), nullable=False, default=SessionStatus.OPEN.value)
    priority = Column(String(20), nullable=False, default=SessionPriority.MEDIUM.value)
    category = Column(String(20), nullable=False, default=SessionCategory.GENERAL.value)
    assigned_to = Column(String(64), ForeignKey("account.id"), nullable=True)

    # Rolling counters, written only by the chat engine
    last_message_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    message_count = Column(Integer, nullable=False, default=0)
    unread_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    participants = relationship(
        "ChatParticipant",
        back_populates="chat_session",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.id",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_chat_session_status_last_message", "status", "last_message_at"),
        Index("ix_chat_session_assigned_status", "assigned_to", "status"),
    )

    def participant_ids(self) -> list:
        return [p.account_id for p in self.participants]

    def has_participant(self, account_id: str) -> bool:
        return any(p.account_id == account_id for p in self.participants)

class ChatParticipant(Base):
    __tablename__ = "chat_participant"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    chat_session_id = Column(BigIntPK, ForeignKey("chat_session.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # snapshot taken when the account joined
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    chat_session = relationship("ChatSession", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("chat_session_id", "account_id", name="uq_chat_participant_session_account"),
    )

class ChatMessage(Base):
    __tablename__ = "chat_message"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    # Plain key, not a foreign key: messages expire independently of their session
    session_id = Column(String(160), nullable=False, index=True)

    sender_id = Column(String(64), nullable=False, index=True)
    sender_role = Column(String(20), nullable=False)  # account role, or system/bot
    message = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    is_read = Column(Boolean, nullable=False, default=False)

    read_by = relationship(
        "ChatReadReceipt",
        back_populates="chat_message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_chat_message_session_timestamp", "session_id", "timestamp"),
    )

class ChatReadReceipt(Base):
    __tablename__ = "chat_message_read"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    message_id = Column(BigIntPK, ForeignKey("chat_message.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(String(64), nullable=False)
    read_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    chat_message = relationship("ChatMessage", back_populates="read_by")
