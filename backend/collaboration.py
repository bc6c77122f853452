# collaboration.py — Invite/uninvite protocol on top of the task repository
import logging

from auth import CurrentUser
from errors import NotFoundError, ValidationError
from models import Task
from notification_gateway import NotificationGateway, NotificationType
from schemas import task_to_out
from task_repository import TaskRepository, same_email

logger = logging.getLogger("taskshare.collab")


class CollaborationService:
    """Owner-only invite/uninvite with stricter errors than a plain update.

    Every failure raises. On success a notification for the affected user is
    handed to the gateway in the background; delivery problems are logged
    there and never reach the caller.
    """

    def __init__(self, repo: TaskRepository, gateway: NotificationGateway):
        self.repo = repo
        self.gateway = gateway

    async def _owned_task(self, task_id: str, owner: CurrentUser) -> Task:
        task = await self.repo.get_by_id(task_id, owner.id)
        if task is None:
            raise NotFoundError("Task not found or you are not the owner")
        return task

    async def invite(self, task_id: str, owner: CurrentUser, invitee_email: str) -> Task:
        await self._owned_task(task_id, owner)

        if not invitee_email or not invitee_email.strip():
            raise ValidationError("Invitee email is required")
        if same_email(invitee_email, owner.email):
            raise ValidationError("You cannot invite the task owner to their own task")

        invitee = await self.repo.find_user_by_email(invitee_email)
        if invitee is None:
            raise NotFoundError(f"User with email {invitee_email} not found")
        if invitee.id == owner.id:
            raise ValidationError("You cannot invite the task owner to their own task")

        task = await self.repo.set_invitee(task_id, invitee.id)
        if task is None:
            raise NotFoundError("Task not found or you are not the owner")

        logger.info(f"Task invite [task={task_id[:8]} owner={owner.id[:8]} invitee={invitee.id[:8]}]")
        self._notify(invitee.id, NotificationType.TASK_INVITATION, task, "inviter", owner)
        return task

    async def uninvite(self, task_id: str, owner: CurrentUser) -> Task:
        current = await self._owned_task(task_id, owner)
        previous_invitee_id = current.invitee_id
        if previous_invitee_id is None:
            raise NotFoundError("No user is currently invited to this task")

        task = await self.repo.clear_invitee(task_id)
        if task is None:
            raise NotFoundError("Task not found or you are not the owner")

        logger.info(f"Task uninvite [task={task_id[:8]} owner={owner.id[:8]} invitee={previous_invitee_id[:8]}]")
        self._notify(previous_invitee_id, NotificationType.TASK_UNINVITATION, task, "uninviter", owner)
        return task

    def _notify(self, user_id: str, event_type: NotificationType, task: Task,
                actor_key: str, actor: CurrentUser) -> None:
        payload = {
            "task": task_to_out(task).model_dump(by_alias=True),
            actor_key: {"id": actor.id, "email": actor.email},
        }
        self.gateway.dispatch(user_id, event_type, payload)
