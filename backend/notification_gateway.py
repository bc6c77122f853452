# notification_gateway.py — Per-user connection registry with event fan-out
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Protocol, Set

from config import WS_SEND_TIMEOUT_SECONDS

logger = logging.getLogger("taskshare.ws")


class NotificationType(str, Enum):
    TASK_INVITATION = "TASK_INVITATION"
    TASK_UNINVITATION = "TASK_UNINVITATION"


class Connection(Protocol):
    """Anything that can push JSON to a client (a starlette WebSocket, a test fake)"""

    async def send_json(self, data: Any) -> None: ...


def build_message(event_type: NotificationType, payload: Dict[str, Any]) -> str:
    title = (payload.get("task") or {}).get("title", "")
    if event_type == NotificationType.TASK_INVITATION:
        return f'You have been invited to collaborate on task: "{title}"'
    return f'You have been removed from task: "{title}"'


class NotificationGateway:
    """Maps user ids to their live connections and pushes events to all of them.

    Delivery is best-effort and at-most-once: users without a live connection
    simply miss the event, and a connection whose send fails or stalls is
    dropped. ``dispatch`` runs delivery as a background task so callers never
    wait on a client socket.
    """

    def __init__(self, send_timeout: float = WS_SEND_TIMEOUT_SECONDS):
        self._connections: Dict[str, List[Connection]] = {}  # user_id -> [connections]
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self.send_timeout = send_timeout

    async def register(self, user_id: str, connection: Connection) -> None:
        async with self._lock:
            connections = self._connections.setdefault(user_id, [])
            if connection not in connections:
                connections.append(connection)
            count = len(connections)
        logger.info(f"WS registered: user={user_id[:8]} connections={count}")

    async def unregister(self, user_id: str, connection: Connection) -> None:
        async with self._lock:
            connections = self._connections.get(user_id)
            if not connections:
                return
            if connection in connections:
                connections.remove(connection)
            if not connections:
                del self._connections[user_id]
        logger.info(f"WS unregistered: user={user_id[:8]}")

    async def notify(self, user_id: str, event_type: NotificationType, payload: Dict[str, Any]) -> int:
        """Send one event to every connection of ``user_id``. Returns the delivery count.

        Connections are written concurrently, each bounded by ``send_timeout``;
        a connection that errors or stalls past the timeout is dropped.
        """
        event_type = NotificationType(event_type)
        notification = {
            "type": event_type.value,
            "data": {
                **payload,
                "message": build_message(event_type, payload),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }

        async with self._lock:
            targets = list(self._connections.get(user_id, ()))

        if not targets:
            logger.debug(f"{event_type.value} dropped: user={user_id[:8]} offline")
            return 0

        results = await asyncio.gather(
            *(asyncio.wait_for(c.send_json(notification), timeout=self.send_timeout) for c in targets),
            return_exceptions=True,
        )

        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                reason = "timed out" if isinstance(result, asyncio.TimeoutError) else str(result)
                logger.warning(f"{event_type.value} delivery failed: user={user_id[:8]} error={reason}")
                await self.unregister(user_id, connection)
            else:
                delivered += 1

        logger.info(f"{event_type.value} sent: user={user_id[:8]} deliveries={delivered}")
        return delivered

    def dispatch(self, user_id: str, event_type: NotificationType, payload: Dict[str, Any]) -> asyncio.Task:
        """Schedule ``notify`` in the background and return immediately"""
        task = asyncio.create_task(self.notify(user_id, event_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._delivery_done)
        return task

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification delivery crashed: {exc}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def connected_user_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict:
        return {
            "connectedUsers": self.connected_user_count(),
            "totalConnections": sum(len(c) for c in self._connections.values()),
        }
