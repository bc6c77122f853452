# routers/websocket_router.py — Push-only notification channel
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from database import get_db_session
from dependencies import get_notification_gateway
from errors import AuthenticationError
from notification_gateway import NotificationGateway

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("taskshare.ws")

AUTH_FAILED_CODE = 4001


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
    gateway: NotificationGateway = Depends(get_notification_gateway),
):
    """Authenticated notification socket; clients only receive task events"""
    if not token:
        await websocket.close(code=AUTH_FAILED_CODE, reason="Authentication failed")
        return

    try:
        user = await AuthService.resolve_token(token, db)
    except AuthenticationError as e:
        logger.warning(f"WS handshake rejected: {e.message}")
        await websocket.close(code=AUTH_FAILED_CODE, reason="Authentication failed")
        return
    finally:
        # release the pooled connection; the socket may stay open for hours
        await db.close()

    await websocket.accept()
    await gateway.register(user.id, websocket)

    try:
        await websocket.send_json({
            "type": "connected",
            "userId": user.id,
            "timestamp": _now(),
        })

        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: user={user.id[:8]} error={e}")
    finally:
        await gateway.unregister(user.id, websocket)


@router.get("/ws/stats")
async def websocket_stats(gateway: NotificationGateway = Depends(get_notification_gateway)):
    """Get WebSocket connection statistics"""
    return gateway.get_stats()
