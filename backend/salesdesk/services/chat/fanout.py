"""
Realtime fanout for chat events.

Owns the table of connected sockets and the per-session rooms they joined.
Room and broadcast delivery runs in background tasks, so publishers never
wait on a socket. Delivery is best-effort and at-most-once: a socket that
fails or stalls is dropped, nothing is queued for later and no error
reaches the publisher.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Set
from uuid import UUID

from salesdesk.core.config import settings
from salesdesk.core.logging import get_logger
from salesdesk.utils.time import utcnow

logger = get_logger(__name__)


class SocketConnection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class RealtimeFanout:
    def __init__(self, send_timeout: Optional[float] = None):
        # Active connections by connection ID
        self.connections: Dict[str, SocketConnection] = {}
        # Room (chat session id) -> connection IDs
        self.rooms: Dict[str, Set[str]] = {}
        self._pending: Set["asyncio.Task[None]"] = set()
        self.send_timeout = send_timeout if send_timeout is not None else settings.REALTIME_SEND_TIMEOUT_SECONDS

    # -- connection table ---------------------------------------------------

    async def connect(self, connection_id: str, socket: SocketConnection) -> None:
        self.connections[connection_id] = socket
        logger.info(f"Socket connected: {connection_id}")

    async def disconnect(self, connection_id: str, *, close: bool = False) -> None:
        """Forget a connection and every room it joined."""
        socket = self.connections.pop(connection_id, None)
        for room in list(self.rooms):
            self._discard(room, connection_id)
        if socket is None:
            return
        logger.info(f"Socket disconnected: {connection_id}")
        if close:
            try:
                await socket.close()
            except Exception as exc:
                logger.warning(f"Error closing socket {connection_id}: {exc}")

    def join(self, connection_id: str, session_id: str) -> None:
        if connection_id not in self.connections:
            return
        self.rooms.setdefault(session_id, set()).add(connection_id)
        logger.info(f"Socket {connection_id} joined chat {session_id}")

    def leave(self, connection_id: str, session_id: str) -> None:
        self._discard(session_id, connection_id)
        logger.info(f"Socket {connection_id} left chat {session_id}")

    def room_members(self, session_id: str) -> Set[str]:
        return set(self.rooms.get(session_id, set()))

    def _discard(self, room: str, connection_id: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            self.rooms.pop(room, None)

    # -- publishing ---------------------------------------------------------

    @staticmethod
    def envelope(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": event,
            "timestamp": utcnow().isoformat(),
            "data": _serialize_value(payload),
        }

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        """Schedule an event for every connected socket and return at once."""
        self._schedule(list(self.connections), self.envelope(event, payload))

    async def publish_to_room(
        self,
        room: str,
        event: str,
        payload: Dict[str, Any],
        *,
        exclude: Optional[str] = None,
    ) -> None:
        """Schedule an event for the sockets subscribed to one chat session."""
        targets = [cid for cid in self.room_members(room) if cid != exclude]
        if not targets:
            logger.debug(f"No subscribers in room {room} for {event}")
            return
        self._schedule(targets, self.envelope(event, payload))

    async def send_to(self, connection_id: str, event: str, payload: Dict[str, Any]) -> None:
        await self._deliver([connection_id], self.envelope(event, payload))

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._pending.clear()

    def _schedule(self, connection_ids: List[str], message: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._deliver(connection_ids, message))
        self._pending.add(task)
        task.add_done_callback(self._delivery_done)

    def _delivery_done(self, task: "asyncio.Task[None]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Realtime delivery task failed: {exc!r}")

    async def _deliver(self, connection_ids: List[str], message: Dict[str, Any]) -> None:
        targets = [(cid, self.connections[cid]) for cid in connection_ids if cid in self.connections]
        if not targets:
            return
        results = await asyncio.gather(
            *(asyncio.wait_for(socket.send_json(message), timeout=self.send_timeout) for _, socket in targets),
            return_exceptions=True,
        )

        # Cleanup connections that failed
        for (connection_id, _), result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(f"Error sending {message.get('type')} to {connection_id}: {result!r}")
                await self.disconnect(connection_id, close=True)


def _serialize_value(value: Any) -> Any:
    """Serialize datetime and UUID objects to JSON-compatible types"""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize_value(v) for v in value]
    return value


realtime_fanout = RealtimeFanout()
