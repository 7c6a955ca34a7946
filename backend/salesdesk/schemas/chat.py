from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# -- read models ---------------------------------------------------------------

class ParticipantRead(CamelModel):
    account_id: str
    role: str
    joined_at: Optional[datetime] = None


class ChatSessionRead(CamelModel):
    session_id: str
    participants: List[ParticipantRead] = []
    status: str
    priority: str
    category: str
    assigned_to: Optional[str] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0
    unread_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReadReceiptRead(CamelModel):
    account_id: str
    read_at: datetime


class ChatMessageRead(CamelModel):
    id: Optional[int] = None
    session_id: str
    sender_id: str
    sender_role: str
    message: str
    message_type: str
    timestamp: Optional[datetime] = None
    is_read: bool = False
    read_by: List[ReadReceiptRead] = []


class PaginationMeta(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


# -- requests ------------------------------------------------------------------

class CreateSessionRequest(CamelModel):
    user_id: Optional[str] = Field(default=None, description="Account to chat with (regular chats)")
    is_support_chat: bool = False


class SendMessageRequest(CamelModel):
    session_id: str
    message: str
    message_type: str = "text"


class AssignChatRequest(CamelModel):
    admin_id: Optional[str] = Field(default=None, description="Omit to unassign")


# -- responses -----------------------------------------------------------------

class SessionResponse(CamelModel):
    chat_session: ChatSessionRead
    session_id: str


class SendMessageResponse(CamelModel):
    message: ChatMessageRead
    chat_session: ChatSessionRead


class MessageListResponse(CamelModel):
    messages: List[ChatMessageRead]
    pagination: PaginationMeta


class SessionListResponse(CamelModel):
    chat_sessions: List[ChatSessionRead]


class PaginatedSessionListResponse(CamelModel):
    chat_sessions: List[ChatSessionRead]
    pagination: PaginationMeta


class ActiveSessionResponse(CamelModel):
    has_active_chat: bool
    chat_session: Optional[ChatSessionRead] = None


class SessionActionResponse(CamelModel):
    message: str
    chat_session: ChatSessionRead
