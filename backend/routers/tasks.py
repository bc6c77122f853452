# routers/tasks.py — Task CRUD, completion toggle and collaboration endpoints
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr, Field, StrictBool

from auth import get_current_user, CurrentUser
from collaboration import CollaborationService
from dependencies import get_task_repository, get_collaboration_service
from errors import NotFoundError, ValidationError
from schemas import CamelModel, TaskOut, TaskPageOut, TaskDeletedOut, task_to_out
from task_repository import TaskRepository, TaskCreate, TaskPatch, TaskQuery, UNSET

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

TASK_NOT_FOUND = "Task not found"


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreateIn(CamelModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    completed: Optional[StrictBool] = None
    invitee_email: Optional[str] = None


class TaskUpdateIn(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    completed: Optional[StrictBool] = None
    invitee_email: Optional[str] = None

    def to_patch(self) -> TaskPatch:
        """Fields absent from the request body stay UNSET; explicit nulls clear"""
        sent = self.model_fields_set
        return TaskPatch(**{
            name: getattr(self, name) if name in sent else UNSET
            for name in ("title", "description", "completed", "invitee_email")
        })


class ToggleIn(CamelModel):
    completed: StrictBool


class InviteIn(CamelModel):
    invitee_email: EmailStr


# ============================================================
# CRUD
# ============================================================

@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreateIn,
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Create a task owned by the current user"""
    task = await repo.create(user.id, TaskCreate(
        title=data.title,
        description=data.description,
        completed=data.completed,
        invitee_email=data.invitee_email,
    ))
    return task_to_out(task)


@router.get("", response_model=TaskPageOut)
async def list_tasks(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    completed: Optional[str] = Query(default=None, pattern=r"^(true|false|all)$"),
    search: Optional[str] = Query(default=None, max_length=200),
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """List tasks the current user owns or was invited to"""
    result = await repo.list(user.id, TaskQuery(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        completed=completed,
        search=search,
    ))
    return TaskPageOut(
        tasks=[task_to_out(t) for t in result.tasks],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    task = await repo.get_by_id(task_id, user.id)
    if task is None:
        raise NotFoundError(TASK_NOT_FOUND)
    return task_to_out(task)


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdateIn,
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Partially update a task; send inviteeEmail null or "" to remove the invitee"""
    patch = data.to_patch()
    if patch.is_empty():
        raise ValidationError("At least one field must be provided for update")
    try:
        task = await repo.update(task_id, user.id, patch)
    except NotFoundError as e:
        # only the invitee lookup raises; a missing task comes back as None
        raise ValidationError(e.message) from e
    if task is None:
        raise NotFoundError(TASK_NOT_FOUND)
    return task_to_out(task)


@router.delete("/{task_id}", response_model=TaskDeletedOut)
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    task = await repo.delete(task_id, user.id)
    if task is None:
        raise NotFoundError(TASK_NOT_FOUND)
    return TaskDeletedOut(message="Task deleted successfully", task=task_to_out(task))


@router.put("/{task_id}/toggle", response_model=TaskOut)
async def toggle_task_completion(
    task_id: str,
    data: ToggleIn,
    user: CurrentUser = Depends(get_current_user),
    repo: TaskRepository = Depends(get_task_repository),
):
    """Set the completed flag directly; repeating the same value is fine"""
    task = await repo.toggle_completion(task_id, user.id, data.completed)
    if task is None:
        raise NotFoundError(TASK_NOT_FOUND)
    return task_to_out(task)


# ============================================================
# COLLABORATION
# ============================================================

@router.post("/{task_id}/invite", response_model=TaskOut)
async def invite_user(
    task_id: str,
    data: InviteIn,
    user: CurrentUser = Depends(get_current_user),
    service: CollaborationService = Depends(get_collaboration_service),
):
    """Invite a collaborator by email, replacing any current invitee"""
    task = await service.invite(task_id, user, data.invitee_email)
    return task_to_out(task)


@router.delete("/{task_id}/uninvite", response_model=TaskOut)
async def uninvite_user(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: CollaborationService = Depends(get_collaboration_service),
):
    task = await service.uninvite(task_id, user)
    return task_to_out(task)
