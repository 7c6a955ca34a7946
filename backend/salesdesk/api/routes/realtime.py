import json
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from salesdesk.api.deps import EngineScope, get_chat_engine_scope, get_realtime_fanout
from salesdesk.core.logging import get_logger
from salesdesk.services.accounts.service import Principal, resolve_principal
from salesdesk.services.chat.errors import ChatError, Forbidden, InvalidInput, StorageError, Unauthenticated
from salesdesk.services.chat.fanout import RealtimeFanout

logger = get_logger(__name__)

router = APIRouter()

CLIENT_FRAME_TYPES = ("join-chat", "leave-chat", "typing", "send-message")


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    engine_scope: EngineScope = Depends(get_chat_engine_scope),
    fanout: RealtimeFanout = Depends(get_realtime_fanout),
):
    """
    Realtime channel for chat rooms.

    Client frames are JSON objects with a ``type`` of ``join-chat``,
    ``leave-chat``, ``typing`` or ``send-message``. Failures are answered
    with an ``error`` frame and the socket stays open.
    """
    try:
        async with engine_scope() as engine:
            principal = await resolve_principal(token, engine.accounts)
    except Unauthenticated as exc:
        logger.info(f"Rejected socket handshake: {exc.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    connection_id = str(uuid4())
    await fanout.connect(connection_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise InvalidInput("Frames must be JSON objects")
                await _handle_frame(frame, principal, connection_id, engine_scope, fanout)
            except json.JSONDecodeError:
                await _send_error(fanout, connection_id, InvalidInput("Malformed JSON frame"))
            except ChatError as exc:
                await _send_error(fanout, connection_id, exc)
            except StorageError as exc:
                logger.error(f"Storage failure on socket {connection_id}: {exc!r}")
                await fanout.send_to(
                    connection_id,
                    "error",
                    {"kind": StorageError.kind, "message": "Internal server error"},
                )
    except WebSocketDisconnect:
        pass
    finally:
        await fanout.disconnect(connection_id)


async def _handle_frame(
    frame: Dict[str, Any],
    principal: Principal,
    connection_id: str,
    engine_scope: EngineScope,
    fanout: RealtimeFanout,
) -> None:
    event = frame.get("type")
    if event not in CLIENT_FRAME_TYPES:
        raise InvalidInput(f"Unknown event type '{event}'")
    session_id = frame.get("sessionId")
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidInput("Chat ID is required")
    session_id = session_id.strip()

    if event == "join-chat":
        async with engine_scope() as engine:
            session = await engine.authorize_room_join(principal, session_id)
        fanout.join(connection_id, session.session_id)
        await fanout.send_to(connection_id, "joined-chat", {"sessionId": session.session_id})

    elif event == "leave-chat":
        fanout.leave(connection_id, session_id)
        await fanout.send_to(connection_id, "left-chat", {"sessionId": session_id})

    elif event == "typing":
        if connection_id not in fanout.room_members(session_id):
            raise Forbidden("Join the chat before sending typing updates")
        await fanout.publish_to_room(
            session_id,
            "user-typing",
            {"accountId": principal.account_id, "isTyping": bool(frame.get("isTyping"))},
            exclude=connection_id,
        )

    else:
        # Persisted first; the engine publishes new-message to the room
        async with engine_scope() as engine:
            await engine.send_message(
                principal,
                session_id,
                frame.get("message"),
                frame.get("messageType") or "text",
            )


async def _send_error(fanout: RealtimeFanout, connection_id: str, exc: ChatError) -> None:
    await fanout.send_to(connection_id, "error", exc.to_dict())
