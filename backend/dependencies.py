# dependencies.py — FastAPI providers for the task and collaboration layers
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from collaboration import CollaborationService
from database import get_db_session
from notification_gateway import NotificationGateway
from task_repository import TaskRepository


def get_notification_gateway(conn: HTTPConnection) -> NotificationGateway:
    """The gateway lives on app.state so each app instance owns its registry"""
    return conn.app.state.notification_gateway


async def get_task_repository(db: AsyncSession = Depends(get_db_session)) -> TaskRepository:
    return TaskRepository(db)


async def get_collaboration_service(
    repo: TaskRepository = Depends(get_task_repository),
    gateway: NotificationGateway = Depends(get_notification_gateway),
) -> CollaborationService:
    return CollaborationService(repo, gateway)
