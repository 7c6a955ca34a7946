from .account import Account, AccountRole
from .chat import (
    ChatMessage,
    ChatReadReceipt,
    ChatParticipant,
    ChatSession,
    MessageType,
    SessionCategory,
    SessionPriority,
    SessionStatus,
)
