# tests/test_collaboration.py — Invite/uninvite protocol and emitted events
import asyncio

import pytest
import pytest_asyncio

from auth import CurrentUser
from collaboration import CollaborationService
from errors import NotFoundError, ValidationError
from notification_gateway import NotificationGateway
from task_repository import TaskRepository, TaskCreate, TaskQuery
from tests.conftest import FakeConnection, StalledConnection, make_user


def _current(user) -> CurrentUser:
    return CurrentUser(id=user.id, email=user.email)


@pytest_asyncio.fixture
async def notifier():
    gateway = NotificationGateway()
    yield gateway
    await gateway.drain()


@pytest.fixture
def service(db_session, notifier):
    return CollaborationService(TaskRepository(db_session), notifier)


@pytest.mark.asyncio
class TestInvite:
    async def test_invite_connects_and_notifies(self, service, notifier, owner, bob):
        tab = FakeConnection()
        await notifier.register(bob.id, tab)
        task = await service.repo.create(owner.id, TaskCreate(title="Buy milk"))

        invited = await service.invite(task.id, _current(owner), "bob@example.com")
        await notifier.drain()

        assert invited.invitee_id == bob.id
        assert invited.invitee.email == "bob@example.com"
        assert len(tab.sent) == 1
        event = tab.sent[0]
        assert event["type"] == "TASK_INVITATION"
        assert event["data"]["task"]["id"] == task.id
        assert event["data"]["task"]["inviteeId"] == bob.id
        assert event["data"]["inviter"] == {"id": owner.id, "email": owner.email}

    async def test_self_invite_rejected_without_mutation(self, service, owner, bob):
        task = await service.repo.create(owner.id, TaskCreate(title="Mine", invitee_email=bob.email))

        with pytest.raises(ValidationError, match="cannot invite the task owner"):
            await service.invite(task.id, _current(owner), "OWNER@example.com")

        unchanged = await service.repo.get_by_id(task.id, owner.id)
        assert unchanged.invitee_id == bob.id

    async def test_unknown_email(self, service, owner):
        task = await service.repo.create(owner.id, TaskCreate(title="Mine"))
        with pytest.raises(NotFoundError):
            await service.invite(task.id, _current(owner), "ghost@example.com")

    async def test_not_owner(self, service, owner, bob, stranger):
        task = await service.repo.create(owner.id, TaskCreate(title="Mine", invitee_email=bob.email))

        with pytest.raises(NotFoundError):
            await service.invite(task.id, _current(bob), "stranger@example.com")
        with pytest.raises(NotFoundError):
            await service.invite("missing", _current(owner), "bob@example.com")

    async def test_reinvite_replaces_invitee(self, service, notifier, db_session, owner, bob):
        carol = await make_user(db_session, "carol@example.com")
        task = await service.repo.create(owner.id, TaskCreate(title="Mine"))

        await service.invite(task.id, _current(owner), bob.email)
        replaced = await service.invite(task.id, _current(owner), carol.email)

        assert replaced.invitee_id == carol.id
        assert (await service.repo.list(bob.id, TaskQuery())).total == 0
        assert (await service.repo.list(carol.id, TaskQuery())).total == 1

    async def test_delivery_failure_does_not_fail_invite(self, service, notifier, owner, bob):
        await notifier.register(bob.id, FakeConnection(fail=True))
        task = await service.repo.create(owner.id, TaskCreate(title="Mine"))

        invited = await service.invite(task.id, _current(owner), bob.email)
        await notifier.drain()

        assert invited.invitee_id == bob.id
        assert not notifier.is_online(bob.id)

    async def test_stalled_invitee_socket_does_not_block_invite(self, service, notifier, owner, bob):
        stalled = StalledConnection()
        await notifier.register(bob.id, stalled)
        task = await service.repo.create(owner.id, TaskCreate(title="Mine"))

        invited = await asyncio.wait_for(service.invite(task.id, _current(owner), bob.email), timeout=1)

        assert invited.invitee_id == bob.id
        assert stalled.sent == []

        stalled.release.set()
        await notifier.drain()
        assert [e["type"] for e in stalled.sent] == ["TASK_INVITATION"]


@pytest.mark.asyncio
class TestUninvite:
    async def test_round_trip_restores_empty_slot(self, service, notifier, owner, bob):
        tab = FakeConnection()
        await notifier.register(bob.id, tab)
        task = await service.repo.create(owner.id, TaskCreate(title="Buy milk", description="2 litres"))

        await service.invite(task.id, _current(owner), bob.email)
        await notifier.drain()
        result = await service.uninvite(task.id, _current(owner))
        await notifier.drain()

        assert result.invitee_id is None
        assert result.invitee is None
        assert result.title == "Buy milk"
        assert result.description == "2 litres"
        assert result.completed is False
        assert [e["type"] for e in tab.sent] == ["TASK_INVITATION", "TASK_UNINVITATION"]
        assert tab.sent[1]["data"]["uninviter"]["id"] == owner.id
        assert tab.sent[1]["data"]["task"]["inviteeId"] is None

    async def test_uninvite_notifies_previous_invitee_only(self, service, notifier, owner, bob, stranger):
        bob_tab, stranger_tab = FakeConnection(), FakeConnection()
        await notifier.register(bob.id, bob_tab)
        await notifier.register(stranger.id, stranger_tab)
        task = await service.repo.create(owner.id, TaskCreate(title="Mine", invitee_email=bob.email))

        await service.uninvite(task.id, _current(owner))
        await notifier.drain()

        assert [e["type"] for e in bob_tab.sent] == ["TASK_UNINVITATION"]
        assert stranger_tab.sent == []

    async def test_uninvite_empty_slot(self, service, owner):
        task = await service.repo.create(owner.id, TaskCreate(title="Mine"))
        with pytest.raises(NotFoundError, match="No user is currently invited"):
            await service.uninvite(task.id, _current(owner))

    async def test_uninvite_not_owner(self, service, owner, bob):
        task = await service.repo.create(owner.id, TaskCreate(title="Mine", invitee_email=bob.email))
        with pytest.raises(NotFoundError):
            await service.uninvite(task.id, _current(bob))
