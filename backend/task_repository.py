# task_repository.py — Task data access with ownership visibility
"""
All task reads and writes go through ``TaskRepository``.

Visibility rules:
  * ``list`` returns tasks the user owns OR is invited to.
  * ``get_by_id``, ``update``, ``delete`` and ``toggle_completion`` are
    owner-only and return ``None`` when nothing matched, so callers can map
    the miss to a 404 without exception handling.

Invitee handling differs between create and update: an unknown
invitee email is skipped silently on create but raises ``NotFoundError`` on
update.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Any

from sqlalchemy import select, delete, func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from errors import ValidationError, NotFoundError, UnexpectedError
from models import Task, User, utcnow

logger = logging.getLogger("taskshare.tasks")


class _Unset:
    """Marker for a patch field the caller did not send"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET: Any = _Unset()

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

# Accepted sort keys, camelCase and snake_case
SORTABLE_FIELDS = {
    "id": Task.id,
    "title": Task.title,
    "description": Task.description,
    "completed": Task.completed,
    "createdAt": Task.created_at,
    "created_at": Task.created_at,
    "updatedAt": Task.updated_at,
    "updated_at": Task.updated_at,
    "ownerId": Task.owner_id,
    "owner_id": Task.owner_id,
    "inviteeId": Task.invitee_id,
    "invitee_id": Task.invitee_id,
}


# ============================================================
# INPUT TYPES
# ============================================================

@dataclass
class TaskCreate:
    title: Optional[str]
    description: Optional[str] = None
    completed: Optional[bool] = None
    invitee_email: Optional[str] = None


@dataclass
class TaskPatch:
    """Partial update where each field is UNSET (leave), None (clear) or a value"""
    title: Any = UNSET
    description: Any = UNSET
    completed: Any = UNSET
    invitee_email: Any = UNSET

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is UNSET
            for name in ("title", "description", "completed", "invitee_email")
        )


@dataclass
class TaskQuery:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    completed: Optional[str] = None
    search: Optional[str] = None


@dataclass
class TaskPage:
    tasks: List[Task] = field(default_factory=list)
    total: int = 0
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit > 0 else 0


def same_email(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.strip().lower() == b.strip().lower()


# ============================================================
# REPOSITORY
# ============================================================

class TaskRepository:
    """Task persistence bound to one AsyncSession"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- helpers ---

    def _select(self):
        return (
            select(Task)
            .options(selectinload(Task.owner), selectinload(Task.invitee))
            .execution_options(populate_existing=True)
        )

    async def _load(self, task_id: str) -> Optional[Task]:
        result = await self.db.execute(self._select().where(Task.id == task_id))
        return result.scalar_one_or_none()

    async def _load_owned(self, task_id: str, owner_id: str) -> Optional[Task]:
        result = await self.db.execute(
            self._select().where(Task.id == task_id, Task.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    async def _commit(self, action: str, task_id: Optional[str] = None) -> bool:
        """Commit the session. Returns False when the row vanished underneath us."""
        try:
            await self.db.commit()
            return True
        except StaleDataError:
            await self.db.rollback()
            logger.info(f"Task {action} raced with a delete [task={(task_id or '?')[:8]}]")
            return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Task {action} failed [task={(task_id or '?')[:8]}]: {e}", exc_info=True)
            raise UnexpectedError() from e

    async def find_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    # --- create ---

    async def create(self, owner_id: str, data: TaskCreate) -> Task:
        if not data.title or not data.title.strip():
            raise ValidationError("Title is required")

        owner = await self.get_user(owner_id)
        if owner is None:
            raise NotFoundError("Owner not found")

        task = Task(
            title=data.title,
            description=data.description,
            completed=bool(data.completed) if data.completed is not None else False,
            owner_id=owner_id,
        )

        if data.invitee_email and not same_email(data.invitee_email, owner.email):
            invitee = await self.find_user_by_email(data.invitee_email)
            if invitee is not None and invitee.id != owner_id:
                task.invitee_id = invitee.id
            elif invitee is None:
                logger.debug("Unknown invitee email skipped on create")

        self.db.add(task)
        await self._commit("create")
        logger.info(f"Task created [task={task.id[:8]} owner={owner_id[:8]}]")
        return await self._load(task.id)

    # --- read ---

    async def list(self, user_id: str, query: TaskQuery) -> TaskPage:
        page = max(query.page, 1)
        limit = max(query.limit, 1)

        conditions = [or_(Task.owner_id == user_id, Task.invitee_id == user_id)]

        if query.completed in ("true", "false"):
            conditions.append(Task.completed == (query.completed == "true"))

        if query.search:
            term = query.search.lower()
            conditions.append(or_(
                func.lower(Task.title).contains(term, autoescape=True),
                func.lower(Task.description).contains(term, autoescape=True),
            ))

        predicate = and_(*conditions)

        sort_column = SORTABLE_FIELDS.get(query.sort_by)
        if sort_column is None:
            sort_column = Task.created_at
            descending = True
        else:
            descending = (query.sort_order or "desc").lower() != "asc"
        ordering = sort_column.desc() if descending else sort_column.asc()
        tie_breaker = Task.id.desc() if descending else Task.id.asc()

        total = (await self.db.execute(
            select(func.count(Task.id)).where(predicate)
        )).scalar() or 0

        result = await self.db.execute(
            self._select()
            .where(predicate)
            .order_by(ordering, tie_breaker)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return TaskPage(tasks=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def get_by_id(self, task_id: str, user_id: str) -> Optional[Task]:
        return await self._load_owned(task_id, user_id)

    # --- mutate ---

    async def update(self, task_id: str, user_id: str, patch: TaskPatch) -> Optional[Task]:
        task = await self._load_owned(task_id, user_id)
        if task is None:
            return None

        # validate everything before touching the row
        if patch.title is not UNSET and (patch.title is None or not str(patch.title).strip()):
            raise ValidationError("Title cannot be empty")
        if patch.completed is not UNSET and not isinstance(patch.completed, bool):
            raise ValidationError("Completed must be a boolean")

        invitee_id = UNSET
        if patch.invitee_email is not UNSET:
            if patch.invitee_email is None or patch.invitee_email == "":
                invitee_id = None
            elif not same_email(patch.invitee_email, task.owner.email):
                invitee = await self.find_user_by_email(patch.invitee_email)
                if invitee is None:
                    raise NotFoundError("Invitee email not found")
                if invitee.id != task.owner_id:
                    invitee_id = invitee.id

        if patch.title is not UNSET:
            task.title = patch.title
        if patch.description is not UNSET:
            task.description = patch.description
        if patch.completed is not UNSET:
            task.completed = patch.completed
        if invitee_id is not UNSET:
            task.invitee_id = invitee_id

        task.updated_at = utcnow()
        if not await self._commit("update", task_id):
            return None
        return await self._load(task_id)

    async def toggle_completion(self, task_id: str, user_id: str, completed: bool) -> Optional[Task]:
        task = await self._load_owned(task_id, user_id)
        if task is None:
            return None
        task.completed = completed
        task.updated_at = utcnow()
        if not await self._commit("toggle", task_id):
            return None
        return await self._load(task_id)

    async def delete(self, task_id: str, user_id: str) -> Optional[Task]:
        task = await self._load_owned(task_id, user_id)
        if task is None:
            return None
        try:
            result = await self.db.execute(
                delete(Task)
                .where(Task.id == task_id, Task.owner_id == user_id)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Task delete failed [task={task_id[:8]}]: {e}", exc_info=True)
            raise UnexpectedError() from e
        if result.rowcount == 0:
            await self.db.rollback()
            logger.info(f"Task delete raced with a delete [task={task_id[:8]}]")
            return None
        self.db.expunge(task)
        if not await self._commit("delete", task_id):
            return None
        logger.info(f"Task deleted [task={task_id[:8]} owner={user_id[:8]}]")
        return task

    # --- invitee slot ---

    async def set_invitee(self, task_id: str, user_id: str) -> Optional[Task]:
        task = await self._load(task_id)
        if task is None:
            return None
        task.invitee_id = user_id
        task.updated_at = utcnow()
        if not await self._commit("invite", task_id):
            return None
        return await self._load(task_id)

    async def clear_invitee(self, task_id: str) -> Optional[Task]:
        task = await self._load(task_id)
        if task is None:
            return None
        task.invitee_id = None
        task.updated_at = utcnow()
        if not await self._commit("uninvite", task_id):
            return None
        return await self._load(task_id)
