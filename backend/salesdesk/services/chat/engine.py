"""
Chat session engine.

Orchestrates session creation and reuse, message admission, assignment,
resolution and reopening. It is the only writer of a session's status,
assignment and counters; persistence goes through a ``SessionDirectory`` and
realtime events through an ``EventPublisher``.

Operations are short sequences of single-document reads and writes and never
hold a lock across an ``await``. Two races are handled as follows:

* two first-contact calls for the same regular pair both try to insert the
  deterministic id; the loser re-reads and returns the winner's session.
* two rapid support requests from one account may both miss the "existing
  session" lookup and create two sessions. This is accepted; readers always
  prefer the newest session.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from salesdesk.core.config import settings
from salesdesk.core.logging import get_logger
from salesdesk.models.account import Account
from salesdesk.models.chat import (
    ChatMessage,
    ChatParticipant,
    ChatSession,
    MessageType,
    SessionCategory,
    SessionPriority,
    SessionStatus,
)
from salesdesk.schemas.chat import ChatMessageRead, ChatSessionRead
from salesdesk.services.accounts.service import Principal
from salesdesk.services.chat.balancer import AdminLoadBalancer
from salesdesk.services.chat.errors import (
    DuplicateSessionError,
    Forbidden,
    InvalidInput,
    InvalidTarget,
    ServiceUnavailable,
    SessionClosed,
    SessionNotFound,
    StorageError,
    Unauthenticated,
)
from salesdesk.services.chat.roles import is_support_capable, normalize_role
from salesdesk.services.chat.state import (
    ACTIVE_STATUSES,
    ALL_STATUSES,
    SessionAction,
    is_read_only,
    next_status,
    parse_status,
)
from salesdesk.services.contracts import AccountDirectory, EventPublisher, SessionDirectory
from salesdesk.utils.debug_log import debug_log
from salesdesk.utils.pagination import compute_total_pages, is_valid_page_request
from salesdesk.utils.time import epoch_millis, utcnow

logger = get_logger(__name__)

ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")
SESSION_ID_PATTERN = re.compile(r"^(chat|support)_[A-Za-z0-9_\-]+$")
SESSION_ID_MAX_LENGTH = 160

EVENT_NEW_CHAT = "new_chat"
EVENT_CHAT_ASSIGNED = "chat_assigned"
EVENT_CHAT_RESOLVED = "chat_resolved"
EVENT_CHAT_REOPENED = "chat_reopened"
EVENT_NEW_MESSAGE = "new-message"

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return compute_total_pages(self.total, self.limit)


def regular_session_id(first: str, second: str) -> str:
    return "chat_" + "_".join(sorted([first, second]))


def support_session_id(first: str, second: str, created_at: datetime) -> str:
    return "support_" + "_".join(sorted([first, second])) + f"_{epoch_millis(created_at)}"


def session_payload(session: ChatSession) -> Dict[str, Any]:
    return ChatSessionRead.model_validate(session).model_dump(mode="json", by_alias=True)


def message_payload(message: ChatMessage) -> Dict[str, Any]:
    return ChatMessageRead.model_validate(message).model_dump(mode="json", by_alias=True)


class ChatSessionEngine:
    def __init__(
        self,
        sessions: SessionDirectory,
        accounts: AccountDirectory,
        publisher: Optional[EventPublisher] = None,
        balancer: Optional[AdminLoadBalancer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.accounts = accounts
        self.publisher = publisher
        self.balancer = balancer or AdminLoadBalancer(sessions)
        self.clock = clock

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    async def create_or_get_session(
        self,
        requester: Optional[Principal],
        target_account_id: Optional[str] = None,
        is_support_request: bool = False,
    ) -> ChatSession:
        """Return the session the requester should talk in, creating it if needed."""
        requester = self._require_principal(requester)

        if is_support_request and not requester.support_capable:
            existing = await self.sessions.find_active_support_session(requester.account_id)
            if existing is not None:
                logger.info(
                    f"Reusing active support chat {existing.session_id} for {requester.account_id}"
                )
                return existing
            return await self._open_support_session(requester)

        return await self._create_or_get_regular_session(requester, target_account_id)

    async def _open_support_session(self, requester: Principal) -> ChatSession:
        pool = await AdminLoadBalancer.support_pool(self.accounts)
        agent = await self.balancer.pick_least_loaded_agent(pool)
        if agent is None:
            raise ServiceUnavailable("No support agents available at the moment. Please try again later.")

        now = self.clock()
        agent_id = str(agent.id)
        session = self._new_session(
            session_id=support_session_id(requester.account_id, agent_id, now),
            members=[(requester.account_id, requester.role), (agent_id, normalize_role(agent.role))],
            status=SessionStatus.ASSIGNED,
            assigned_to=agent_id,
            priority=SessionPriority.MEDIUM,
            category=SessionCategory.SUPPORT,
            now=now,
        )
        try:
            session = await self.sessions.create_session(session)
        except DuplicateSessionError:
            # Same requester, same agent, same millisecond
            return await self._refetch_after_race(session.session_id)

        await self._post_system_message(
            session.session_id,
            sender_id=agent_id,
            text=f"Support chat started with {agent.display_name}.",
            now=now,
        )
        logger.info(f"Support chat {session.session_id} opened for {requester.account_id}, assigned to {agent_id}")
        self._trace(session, "create", None, session.status, requester)
        await self._broadcast(
            EVENT_NEW_CHAT,
            {"chatSession": session_payload(session), "participants": session.participant_ids()},
        )
        return session

    async def _create_or_get_regular_session(
        self,
        requester: Principal,
        target_account_id: Optional[str],
    ) -> ChatSession:
        target_id = (target_account_id or "").strip()
        if not target_id:
            raise InvalidTarget("User ID is required for regular chats")
        if not ACCOUNT_ID_PATTERN.match(target_id):
            raise InvalidTarget("Invalid user ID format")
        if target_id == requester.account_id:
            raise InvalidTarget("Cannot start chat with yourself")

        target = await self.accounts.find_account_by_id(target_id)
        if target is None:
            raise InvalidTarget("User not found", status_code=404)

        session_id = regular_session_id(requester.account_id, target_id)
        existing = await self.sessions.find_session(session_id)
        if existing is not None:
            return existing

        if requester.support_capable:
            # Agent-initiated chats are handled by the initiating agent
            status, assigned_to, priority = SessionStatus.ASSIGNED, requester.account_id, SessionPriority.LOW
        else:
            # Waits in the queue for an admin to pick it up
            status, assigned_to, priority = SessionStatus.OPEN, None, SessionPriority.MEDIUM

        now = self.clock()
        session = self._new_session(
            session_id=session_id,
            members=[(requester.account_id, requester.role), (target_id, normalize_role(target.role))],
            status=status,
            assigned_to=assigned_to,
            priority=priority,
            category=SessionCategory.GENERAL,
            now=now,
        )
        try:
            session = await self.sessions.create_session(session)
        except DuplicateSessionError:
            return await self._refetch_after_race(session_id)

        await self._post_system_message(
            session.session_id,
            sender_id=assigned_to or requester.account_id,
            text=f"Chat started between {requester.display_name or requester.account_id} and {target.display_name}.",
            now=now,
        )
        logger.info(f"Chat {session.session_id} created by {requester.account_id} with status {session.status}")
        self._trace(session, "create", None, session.status, requester)
        await self._broadcast(
            EVENT_NEW_CHAT,
            {"chatSession": session_payload(session), "participants": session.participant_ids()},
        )
        return session

    async def _refetch_after_race(self, session_id: str) -> ChatSession:
        winner = await self.sessions.find_session(session_id)
        if winner is None:
            raise StorageError(f"chat session {session_id} vanished after a duplicate insert")
        logger.info(f"Lost creation race for {session_id}; returning the existing session")
        return winner

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(
        self,
        sender: Optional[Principal],
        session_id: str,
        text: Any,
        message_type: str = MessageType.TEXT.value,
    ) -> Tuple[ChatMessage, ChatSession]:
        sender = self._require_principal(sender)
        body, kind = self._validate_message(text, message_type)
        session = await self._load_session(session_id)

        if is_read_only(session.status):
            raise SessionClosed(session.session_id, session.status)

        # Any admin may step into any chat
        allowed = (
            session.has_participant(sender.account_id)
            or (session.assigned_to is not None and session.assigned_to == sender.account_id)
            or sender.support_capable
        )
        if not allowed:
            raise Forbidden("Not authorized to send messages in this chat")

        now = self.clock()
        message = ChatMessage(
            session_id=session.session_id,
            sender_id=sender.account_id,
            sender_role=sender.role,
            message=body,
            message_type=kind,
            timestamp=now,
            is_read=False,
            read_by=[],
        )
        message = await self.sessions.append_message(message)

        # One unread per other participant, not tracked per recipient
        others = [p for p in session.participants if p.account_id != sender.account_id]
        session.last_message_at = now
        session.message_count = (session.message_count or 0) + 1
        session.unread_count = (session.unread_count or 0) + len(others)
        session = await self.sessions.save_session(session)

        await self._publish_to_room(
            session.session_id,
            EVENT_NEW_MESSAGE,
            {
                "message": message_payload(message),
                "chatSession": {
                    "sessionId": session.session_id,
                    "lastMessageAt": session.last_message_at,
                    "unreadCount": session.unread_count,
                },
            },
        )
        return message, session

    async def get_messages(
        self,
        viewer: Optional[Principal],
        session_id: str,
        page: int = 1,
        limit: int = 50,
    ) -> Page[ChatMessage]:
        viewer = self._require_principal(viewer)
        page, limit = self._check_pagination(page, limit)
        session = await self._load_session(session_id)
        if not (session.has_participant(viewer.account_id) or viewer.support_capable):
            raise Forbidden("Not authorized to view this chat")

        items, total = await self.sessions.list_messages(session.session_id, page=page, limit=limit)
        return Page(items=items, page=page, limit=limit, total=total)

    async def mark_read(self, actor: Optional[Principal], session_id: str) -> ChatSession:
        """Mark everything the other side wrote as read and recount unread messages."""
        actor = self._require_principal(actor)
        session = await self._load_session(session_id)
        if not session.has_participant(actor.account_id):
            raise Forbidden("Not authorized to mark messages as read in this chat")

        marked = await self.sessions.mark_read(
            session.session_id, reader_id=actor.account_id, read_at=self.clock()
        )
        session.unread_count = await self.sessions.count_unread(
            session.session_id, excluding_sender=actor.account_id
        )
        session = await self.sessions.save_session(session)
        logger.debug(f"{actor.account_id} marked {marked} messages read in {session.session_id}")
        return session

    # ------------------------------------------------------------------
    # Agent operations
    # ------------------------------------------------------------------

    async def assign_chat(
        self,
        actor: Optional[Principal],
        session_id: str,
        agent_id: Optional[str] = None,
    ) -> ChatSession:
        """Assign the chat to a support agent, or unassign it when ``agent_id`` is empty."""
        actor = self._require_support(actor, "Not authorized")
        session = await self._load_session(session_id)
        previous = session.status

        agent_id = (agent_id or "").strip() or None
        if agent_id is not None:
            agent = await self._load_agent(agent_id)
            session.status = next_status(previous, SessionAction.ASSIGN)
            session.assigned_to = str(agent.id)
        else:
            agent = None
            session.status = next_status(previous, SessionAction.UNASSIGN)
            session.assigned_to = None
        session = await self.sessions.save_session(session)

        if agent is not None and previous in (SessionStatus.OPEN.value, SessionStatus.REOPENED.value):
            await self._post_system_message(
                session.session_id,
                sender_id=str(agent.id),
                text=f"{agent.display_name} has been assigned to this chat.",
                now=self.clock(),
            )

        action = SessionAction.ASSIGN if agent is not None else SessionAction.UNASSIGN
        self._trace(session, action.value, previous, session.status, actor)
        await self._broadcast(
            EVENT_CHAT_ASSIGNED,
            {
                "sessionId": session.session_id,
                "assignedTo": session.assigned_to,
                "chatSession": session_payload(session),
            },
        )
        return session

    async def resolve_chat(self, actor: Optional[Principal], session_id: str) -> ChatSession:
        actor = self._require_support(actor, "Not authorized to resolve chats")
        session = await self._load_session(session_id)
        return await self._transition(
            actor,
            session,
            SessionAction.RESOLVE,
            system_text=f"Chat resolved by {actor.display_name or actor.account_id}.",
            event=EVENT_CHAT_RESOLVED,
        )

    async def reopen_chat(self, actor: Optional[Principal], session_id: str) -> ChatSession:
        actor = self._require_support(actor, "Not authorized to reopen chats")
        session = await self._load_session(session_id)
        return await self._transition(
            actor,
            session,
            SessionAction.REOPEN,
            system_text=f"Chat reopened by {actor.display_name or actor.account_id}.",
            event=EVENT_CHAT_REOPENED,
        )

    async def _transition(
        self,
        actor: Principal,
        session: ChatSession,
        action: SessionAction,
        *,
        system_text: str,
        event: str,
    ) -> ChatSession:
        previous = session.status
        session.status = next_status(previous, action)
        session = await self.sessions.save_session(session)

        await self._post_system_message(
            session.session_id,
            sender_id=actor.account_id,
            text=system_text,
            now=self.clock(),
        )
        logger.info(f"Chat {session.session_id} {previous} -> {session.status} by {actor.account_id}")
        self._trace(session, action.value, previous, session.status, actor)
        await self._broadcast(
            event,
            {"sessionId": session.session_id, "chatSession": session_payload(session)},
        )
        return session

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_user_sessions(
        self,
        actor: Optional[Principal],
        status: Optional[str] = "active",
    ) -> List[ChatSession]:
        actor = self._require_principal(actor)
        if status is None or status.strip().lower() in ("", "active"):
            statuses = ACTIVE_STATUSES
        else:
            statuses = {parse_status(status)}
        items, _ = await self.sessions.list_sessions(
            participant_id=actor.account_id,
            statuses=statuses,
            limit=None,
        )
        return items

    async def get_active_session(self, actor: Optional[Principal]) -> Optional[ChatSession]:
        actor = self._require_principal(actor)
        return await self.sessions.find_active_support_session(actor.account_id)

    async def list_all_sessions(
        self,
        actor: Optional[Principal],
        status: Optional[str] = None,
        assigned: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[ChatSession]:
        actor = self._require_support(actor, "Not authorized")
        page, limit = self._check_pagination(page, limit)

        # Unknown status / assignment filters are ignored rather than rejected
        statuses = {status} if status in ALL_STATUSES else None
        assigned_to = actor.account_id if assigned == "me" else None
        items, total = await self.sessions.list_sessions(
            statuses=statuses,
            assigned_to=assigned_to,
            unassigned=assigned == "unassigned",
            page=page,
            limit=limit,
        )
        return Page(items=items, page=page, limit=limit, total=total)

    async def authorize_room_join(self, principal: Optional[Principal], session_id: str) -> ChatSession:
        """Check that a socket may subscribe to a session's realtime room."""
        principal = self._require_principal(principal)
        session = await self._load_session(session_id)
        if not (session.has_participant(principal.account_id) or principal.support_capable):
            raise Forbidden("Not authorized to join this chat")
        return session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_principal(principal: Optional[Principal]) -> Principal:
        if principal is None or not principal.account_id:
            raise Unauthenticated("Authentication required")
        return principal

    def _require_support(self, principal: Optional[Principal], message: str) -> Principal:
        principal = self._require_principal(principal)
        if not principal.support_capable:
            raise Forbidden(message)
        return principal

    async def _load_session(self, session_id: str) -> ChatSession:
        session_id = (session_id or "").strip()
        if not session_id:
            raise InvalidInput("Chat ID is required")
        if len(session_id) > SESSION_ID_MAX_LENGTH or not SESSION_ID_PATTERN.match(session_id):
            raise InvalidInput("Invalid chat ID format")
        session = await self.sessions.find_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _load_agent(self, agent_id: str) -> Account:
        if not ACCOUNT_ID_PATTERN.match(agent_id):
            raise InvalidTarget("Invalid admin ID format")
        agent = await self.accounts.find_account_by_id(agent_id)
        if agent is None or not is_support_capable(agent.role):
            raise InvalidTarget("Invalid admin ID")
        return agent

    @staticmethod
    def _validate_message(text: Any, message_type: Optional[str]) -> Tuple[str, str]:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Message must be a non-empty string")
        body = text.strip()
        max_length = settings.CHAT_MESSAGE_MAX_LENGTH
        if len(body) > max_length:
            raise InvalidInput(f"Message too long (maximum {max_length} characters)")
        kind = message_type or MessageType.TEXT.value
        if kind not in {t.value for t in MessageType}:
            raise InvalidInput("Invalid message type")
        return body, kind

    @staticmethod
    def _check_pagination(page: int, limit: int) -> Tuple[int, int]:
        if not is_valid_page_request(page, limit, settings.CHAT_MESSAGES_PAGE_LIMIT_MAX):
            raise InvalidInput("Invalid pagination parameters")
        return int(page), int(limit)

    @staticmethod
    def _new_session(
        *,
        session_id: str,
        members: List[Tuple[str, str]],
        status: SessionStatus,
        assigned_to: Optional[str],
        priority: SessionPriority,
        category: SessionCategory,
        now: datetime,
    ) -> ChatSession:
        return ChatSession(
            session_id=session_id,
            participants=[
                ChatParticipant(account_id=account_id, role=role, joined_at=now)
                for account_id, role in members
            ],
            status=status.value,
            priority=priority.value,
            category=category.value,
            assigned_to=assigned_to,
            last_message_at=now,
            message_count=0,
            unread_count=0,
            created_at=now,
            updated_at=now,
        )

    async def _post_system_message(
        self,
        session_id: str,
        *,
        sender_id: str,
        text: str,
        now: datetime,
        sender_role: str = "system",
    ) -> ChatMessage:
        message = ChatMessage(
            session_id=session_id,
            sender_id=sender_id,
            sender_role=sender_role,
            message=text,
            message_type=MessageType.SYSTEM.value,
            timestamp=now,
            is_read=False,
            read_by=[],
        )
        return await self.sessions.append_message(message)

    async def _broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.broadcast(event, payload)
        except Exception as exc:
            logger.warning(f"Realtime broadcast of {event} failed: {exc!r}")

    async def _publish_to_room(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_to_room(room, event, payload)
        except Exception as exc:
            logger.warning(f"Realtime publish of {event} to {room} failed: {exc!r}")

    def _trace(
        self,
        session: ChatSession,
        action: str,
        previous: Optional[str],
        current: str,
        actor: Principal,
    ) -> None:
        debug_log(
            {
                "event": "chat_transition",
                "sessionId": session.session_id,
                "action": action,
                "from": previous,
                "to": current,
                "actor": actor.account_id,
                "at": self.clock().isoformat(),
            }
        )
