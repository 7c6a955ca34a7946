from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from salesdesk.api.deps import get_chat_engine, get_current_principal
from salesdesk.core.config import settings
from salesdesk.core.rate_limit import (
    CHAT_CREATE_LIMIT_MESSAGE,
    CHAT_MESSAGE_LIMIT_MESSAGE,
    CHAT_REQUEST_LIMIT_MESSAGE,
    limiter,
)
from salesdesk.schemas.chat import (
    ActiveSessionResponse,
    AssignChatRequest,
    ChatMessageRead,
    ChatSessionRead,
    CreateSessionRequest,
    MessageListResponse,
    PaginatedSessionListResponse,
    PaginationMeta,
    SendMessageRequest,
    SendMessageResponse,
    SessionActionResponse,
    SessionListResponse,
    SessionResponse,
)
from salesdesk.services.accounts.service import Principal
from salesdesk.services.chat.engine import ChatSessionEngine, Page

router = APIRouter()


def _pagination(page: Page) -> PaginationMeta:
    return PaginationMeta(page=page.page, limit=page.limit, total=page.total, pages=page.pages)


@router.post("/session", response_model=SessionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_CREATE_RATE_LIMIT, error_message=CHAT_CREATE_LIMIT_MESSAGE)
async def create_or_get_session(
    request: Request,
    payload: CreateSessionRequest,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionResponse:
    session = await engine.create_or_get_session(
        principal,
        target_account_id=payload.user_id,
        is_support_request=payload.is_support_chat,
    )
    return SessionResponse(
        chat_session=ChatSessionRead.model_validate(session),
        session_id=session.session_id,
    )


@router.post("/message", response_model=SendMessageResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_MESSAGE_RATE_LIMIT, error_message=CHAT_MESSAGE_LIMIT_MESSAGE)
async def send_message(
    request: Request,
    payload: SendMessageRequest,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SendMessageResponse:
    message, session = await engine.send_message(
        principal,
        payload.session_id,
        payload.message,
        payload.message_type,
    )
    return SendMessageResponse(
        message=ChatMessageRead.model_validate(message),
        chat_session=ChatSessionRead.model_validate(session),
    )


@router.get("/sessions/user", response_model=SessionListResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def list_user_sessions(
    request: Request,
    status: Optional[str] = Query("active"),
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionListResponse:
    sessions = await engine.list_user_sessions(principal, status=status)
    return SessionListResponse(chat_sessions=[ChatSessionRead.model_validate(s) for s in sessions])


@router.get("/active", response_model=ActiveSessionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def get_active_session(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> ActiveSessionResponse:
    session = await engine.get_active_session(principal)
    if session is None:
        return ActiveSessionResponse(has_active_chat=False)
    return ActiveSessionResponse(
        has_active_chat=True,
        chat_session=ChatSessionRead.model_validate(session),
    )


@router.get("/sessions", response_model=PaginatedSessionListResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def list_all_sessions(
    request: Request,
    status: Optional[str] = None,
    assigned: Optional[str] = None,
    page: int = Query(1),
    limit: int = Query(20),
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> PaginatedSessionListResponse:
    result = await engine.list_all_sessions(
        principal,
        status=status,
        assigned=assigned,
        page=page,
        limit=limit,
    )
    return PaginatedSessionListResponse(
        chat_sessions=[ChatSessionRead.model_validate(s) for s in result.items],
        pagination=_pagination(result),
    )


@router.get("/{session_id}/messages", response_model=MessageListResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def get_messages(
    request: Request,
    session_id: str,
    page: int = Query(1),
    limit: int = Query(50),
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> MessageListResponse:
    # Range checks live in the engine so they answer 400, not 422
    result = await engine.get_messages(principal, session_id, page=page, limit=limit)
    return MessageListResponse(
        messages=[ChatMessageRead.model_validate(m) for m in result.items],
        pagination=_pagination(result),
    )


@router.put("/{session_id}/assign", response_model=SessionActionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def assign_chat(
    request: Request,
    session_id: str,
    payload: Optional[AssignChatRequest] = None,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionActionResponse:
    admin_id = payload.admin_id if payload else None
    session = await engine.assign_chat(principal, session_id, admin_id)
    return SessionActionResponse(
        message="Chat assigned successfully" if admin_id else "Chat unassigned",
        chat_session=ChatSessionRead.model_validate(session),
    )


@router.put("/{session_id}/resolve", response_model=SessionActionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def resolve_chat(
    request: Request,
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionActionResponse:
    session = await engine.resolve_chat(principal, session_id)
    return SessionActionResponse(
        message="Chat resolved successfully",
        chat_session=ChatSessionRead.model_validate(session),
    )


@router.put("/{session_id}/reopen", response_model=SessionActionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def reopen_chat(
    request: Request,
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionActionResponse:
    session = await engine.reopen_chat(principal, session_id)
    return SessionActionResponse(
        message="Chat reopened successfully",
        chat_session=ChatSessionRead.model_validate(session),
    )


@router.put("/{session_id}/read", response_model=SessionActionResponse, response_model_by_alias=True)
@limiter.limit(settings.CHAT_REQUEST_RATE_LIMIT, error_message=CHAT_REQUEST_LIMIT_MESSAGE)
async def mark_read(
    request: Request,
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> SessionActionResponse:
    session = await engine.mark_read(principal, session_id)
    return SessionActionResponse(
        message="Messages marked as read",
        chat_session=ChatSessionRead.model_validate(session),
    )
