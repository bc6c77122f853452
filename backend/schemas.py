# schemas.py — Shared response schemas (camelCase on the wire)
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import Task, User


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserRef(CamelModel):
    id: str
    email: str


class UserOut(CamelModel):
    id: str
    email: str
    created_at: Optional[str] = None


class TaskOut(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    completed: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    owner_id: str
    invitee_id: Optional[str] = None
    owner: Optional[UserRef] = None
    invitee: Optional[UserRef] = None


class TaskPageOut(CamelModel):
    tasks: List[TaskOut]
    total: int
    page: int
    limit: int
    total_pages: int


class TaskDeletedOut(CamelModel):
    message: str
    task: TaskOut


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def user_ref(user: Optional[User]) -> Optional[UserRef]:
    if user is None:
        return None
    return UserRef(id=user.id, email=user.email)


def user_to_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, created_at=_ts(user.created_at))


def task_to_out(task: Task) -> TaskOut:
    """Convert a Task ORM object (owner and invitee loaded) to TaskOut"""
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        completed=bool(task.completed),
        created_at=_ts(task.created_at),
        updated_at=_ts(task.updated_at),
        owner_id=task.owner_id,
        invitee_id=task.invitee_id,
        owner=user_ref(task.owner),
        invitee=user_ref(task.invitee),
    )
