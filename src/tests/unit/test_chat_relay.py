"""Unit tests for the chat relay."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from tasksync.core.channels import ChannelManager
from tasksync.core.chat import ChatRelay
from tasksync.core.errors import ForbiddenError, InvalidArgumentError, NotFoundError, UnavailableError
from tasksync.models import Project, User
from tasksync.storage import PersistenceGateway


@pytest_asyncio.fixture
async def watcher(channels: ChannelManager, connect, project: Project, employee: User):
    session, recorder = connect(employee)
    channels.join(session, project.id)
    return session, recorder


class TestSend:
    """Tests for posting chat messages."""

    @pytest.mark.asyncio
    async def test_member_message_is_stored_and_broadcast(
        self, relay: ChatRelay, gateway: PersistenceGateway, watcher, employee: User, project: Project
    ) -> None:
        session, recorder = watcher

        view = await relay.send(employee, project.id, "  hello team  ")
        await session.drain()

        assert view.text == "hello team"
        assert view.sender == employee.id
        assert view.sender_user.name == "Eve Employee"
        stored = await gateway.list_messages(project.id)
        assert [m.id for m in stored] == [view.id]
        assert recorder.frames[0]["type"] == "newMessage"
        assert recorder.frames[0]["data"]["id"] == view.id
        assert recorder.frames[0]["data"]["text"] == "hello team"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_is_rejected(
        self, relay: ChatRelay, gateway: PersistenceGateway, watcher, employee: User, project: Project, text: str
    ) -> None:
        session, recorder = watcher

        with pytest.raises(InvalidArgumentError):
            await relay.send(employee, project.id, text)
        await session.drain()

        assert await gateway.list_messages(project.id) == []
        assert recorder.frames == []

    @pytest.mark.asyncio
    async def test_overlong_text_is_rejected(self, relay: ChatRelay, employee: User, project: Project) -> None:
        with pytest.raises(InvalidArgumentError) as exc_info:
            await relay.send(employee, project.id, "x" * 201)

        assert exc_info.value.details["max_length"] == 200

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, relay: ChatRelay, outsider: User, project: Project) -> None:
        with pytest.raises(ForbiddenError):
            await relay.send(outsider, project.id, "let me in")

    @pytest.mark.asyncio
    async def test_unknown_project(self, relay: ChatRelay, employee: User) -> None:
        with pytest.raises(NotFoundError):
            await relay.send(employee, "missing", "hello")

    @pytest.mark.asyncio
    async def test_store_failure_aborts_without_broadcast(
        self, relay: ChatRelay, gateway: PersistenceGateway, watcher, employee: User, project: Project
    ) -> None:
        session, recorder = watcher
        gateway.store.insert = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(UnavailableError):
            await relay.send(employee, project.id, "hello")
        await session.drain()

        assert recorder.frames == []

    @pytest.mark.asyncio
    async def test_broadcast_failure_still_returns_message(
        self, gateway: PersistenceGateway, employee: User, project: Project
    ) -> None:
        broadcaster = MagicMock()
        broadcaster.broadcast.side_effect = RuntimeError("bus down")
        relay = ChatRelay(gateway, broadcaster)

        view = await relay.send(employee, project.id, "still saved")

        assert [m.id for m in await gateway.list_messages(project.id)] == [view.id]

    @pytest.mark.asyncio
    async def test_identical_texts_are_kept(
        self, relay: ChatRelay, gateway: PersistenceGateway, employee: User, project: Project
    ) -> None:
        first = await relay.send(employee, project.id, "ok")
        second = await relay.send(employee, project.id, "ok")

        assert first.id != second.id
        assert len(await gateway.list_messages(project.id)) == 2


class TestOrdering:
    """Persisted order and broadcast order agree."""

    @pytest.mark.asyncio
    async def test_concurrent_senders_see_one_order(
        self,
        relay: ChatRelay,
        channels: ChannelManager,
        connect,
        admin: User,
        employee: User,
        project: Project,
    ) -> None:
        s1, r1 = connect(admin)
        s2, r2 = connect(employee)
        channels.join(s1, project.id)
        channels.join(s2, project.id)

        await asyncio.gather(*(relay.send(admin if i % 2 else employee, project.id, f"m{i}") for i in range(8)))
        await s1.drain()
        await s2.drain()

        history = [m.text for m in await relay.history(employee, project.id)]
        assert [f["data"]["text"] for f in r1.frames] == history
        assert [f["data"]["text"] for f in r2.frames] == history
        assert sorted(history) == sorted(f"m{i}" for i in range(8))

    @pytest.mark.asyncio
    async def test_history_is_chronological(self, relay: ChatRelay, employee: User, project: Project) -> None:
        for text in ("one", "two", "three"):
            await relay.send(employee, project.id, text)

        history = await relay.history(employee, project.id)

        assert [m.text for m in history] == ["one", "two", "three"]
        assert all(a.created_at <= b.created_at for a, b in zip(history, history[1:]))

    @pytest.mark.asyncio
    async def test_history_requires_membership(self, relay: ChatRelay, outsider: User, project: Project) -> None:
        with pytest.raises(ForbiddenError):
            await relay.history(outsider, project.id)
