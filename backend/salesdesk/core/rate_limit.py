from slowapi import Limiter
from slowapi.util import get_remote_address

from salesdesk.core.config import settings

# Per client address, in-process storage unless RATE_LIMIT_STORAGE_URI points elsewhere
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)

CHAT_CREATE_LIMIT_MESSAGE = "Too many chat sessions created, please wait before creating more."
CHAT_MESSAGE_LIMIT_MESSAGE = "Too many messages sent, please wait before sending more."
CHAT_REQUEST_LIMIT_MESSAGE = "Too many chat requests, please slow down."
