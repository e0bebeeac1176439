"""Unit tests for room membership and fan-out."""

import asyncio

import pytest

from tasksync.core.channels import ChannelManager
from tasksync.models import EventKind, User


@pytest.fixture
def alice() -> User:
    return User(name="Alice", email="alice@example.com")


@pytest.fixture
def bob() -> User:
    return User(name="Bob", email="bob@example.com")


class TestJoinLeave:
    """Tests for room membership bookkeeping."""

    @pytest.mark.asyncio
    async def test_join_is_idempotent(self, channels: ChannelManager, connect, alice: User) -> None:
        session, _ = connect(alice)

        assert channels.join(session, "p1") is True
        assert channels.join(session, "p1") is False
        assert channels.members("p1") == [session]

    @pytest.mark.asyncio
    async def test_leave_is_idempotent(self, channels: ChannelManager, connect, alice: User) -> None:
        session, _ = connect(alice)
        channels.join(session, "p1")

        assert channels.leave(session, "p1") is True
        assert channels.leave(session, "p1") is False
        assert channels.leave(session, "never-joined") is False
        assert "p1" not in channels.room_ids()

    @pytest.mark.asyncio
    async def test_session_can_be_in_several_rooms(self, channels: ChannelManager, connect, alice: User) -> None:
        session, _ = connect(alice)
        channels.join(session, "p1")
        channels.join(session, "p2")

        assert session.rooms == {"p1", "p2"}
        assert sorted(channels.room_ids()) == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_disconnect_leaves_every_room(self, channels: ChannelManager, connect, alice: User) -> None:
        session, _ = connect(alice)
        channels.join(session, "p1")
        channels.join(session, "p2")

        await channels.disconnect(session)

        assert channels.room_ids() == []
        assert channels.session_count == 0
        assert session.is_closed
        assert channels.join(session, "p1") is False


class TestBroadcast:
    """Tests for event fan-out."""

    @pytest.mark.asyncio
    async def test_every_member_receives_the_event(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        s1, r1 = connect(alice)
        s2, r2 = connect(bob)
        channels.join(s1, "p1")
        channels.join(s2, "p1")

        delivered = channels.broadcast("p1", EventKind.TASK_UPDATED, {"id": "t1"})
        await s1.drain()
        await s2.drain()

        assert delivered == 2
        for recorder in (r1, r2):
            assert recorder.frames == [
                {"type": "taskUpdated", "project_id": "p1", "seq": 1, "data": {"id": "t1"}}
            ]

    @pytest.mark.asyncio
    async def test_rooms_are_isolated(self, channels: ChannelManager, connect, alice: User, bob: User) -> None:
        s1, r1 = connect(alice)
        s2, r2 = connect(bob)
        channels.join(s1, "p1")
        channels.join(s2, "p2")

        channels.broadcast("p1", EventKind.NEW_MESSAGE, {"text": "hi"})
        await s1.drain()
        await s2.drain()

        assert len(r1.frames) == 1
        assert r2.frames == []

    @pytest.mark.asyncio
    async def test_empty_room_is_a_noop(self, channels: ChannelManager) -> None:
        assert channels.broadcast("nobody-here", EventKind.TASK_DELETED, {"id": "t1"}) == 0
        assert channels.room_ids() == []

    @pytest.mark.asyncio
    async def test_events_arrive_in_broadcast_order(self, channels: ChannelManager, connect, alice: User) -> None:
        session, recorder = connect(alice, delay=0.001)
        channels.join(session, "p1")

        for i in range(10):
            channels.broadcast("p1", EventKind.TASK_UPDATED, {"n": i})
        await session.drain()

        assert [f["data"]["n"] for f in recorder.frames] == list(range(10))
        assert [f["seq"] for f in recorder.frames] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_seq_is_per_room(self, channels: ChannelManager, connect, alice: User) -> None:
        session, recorder = connect(alice)
        channels.join(session, "p1")
        channels.join(session, "p2")

        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        channels.broadcast("p2", EventKind.TASK_UPDATED, {})
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        await session.drain()

        assert [(f["project_id"], f["seq"]) for f in recorder.frames] == [("p1", 1), ("p2", 1), ("p1", 2)]

    @pytest.mark.asyncio
    async def test_failing_session_is_dropped_without_affecting_others(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        dead, _ = connect(alice, fail=True)
        alive, recorder = connect(bob)
        channels.join(dead, "p1")
        channels.join(alive, "p1")

        channels.broadcast("p1", EventKind.TASK_UPDATED, {"id": "t1"})
        await asyncio.wait_for(dead.closed.wait(), timeout=1)
        channels.broadcast("p1", EventKind.TASK_UPDATED, {"id": "t2"})
        await alive.drain()

        assert channels.members("p1") == [alive]
        assert [f["data"]["id"] for f in recorder.frames] == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_overflowing_session_is_dropped(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        slow, _ = connect(alice, queue_size=1)
        fast, recorder = connect(bob)
        channels.join(slow, "p1")
        channels.join(fast, "p1")

        first = channels.broadcast("p1", EventKind.TASK_UPDATED, {"n": 1})
        second = channels.broadcast("p1", EventKind.TASK_UPDATED, {"n": 2})
        await fast.drain()

        assert first == 2
        assert second == 1
        assert slow.is_closed
        assert channels.members("p1") == [fast]
        assert len(recorder.frames) == 2

    @pytest.mark.asyncio
    async def test_session_that_left_receives_nothing(self, channels: ChannelManager, connect, alice: User) -> None:
        session, recorder = connect(alice)
        channels.join(session, "p1")
        channels.leave(session, "p1")

        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        await session.drain()

        assert recorder.frames == []


class TestPruneAndClose:
    """Tests for membership changes on open rooms."""

    @pytest.mark.asyncio
    async def test_prune_removes_sessions_failing_predicate(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        s1, _ = connect(alice)
        s2, _ = connect(bob)
        channels.join(s1, "p1")
        channels.join(s2, "p1")

        removed = channels.prune("p1", lambda session: session.user.id == alice.id)

        assert removed == [s2]
        assert channels.members("p1") == [s1]
        assert channels.session_count == 2

    @pytest.mark.asyncio
    async def test_close_room_notifies_then_empties(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        s1, r1 = connect(alice)
        s2, r2 = connect(bob)
        channels.join(s1, "p1")
        channels.join(s2, "p1")

        closed = channels.close_room("p1")
        await s1.drain()
        await s2.drain()

        assert closed == 2
        assert channels.members("p1") == []
        for recorder in (r1, r2):
            assert recorder.of_type("projectClosed") == [
                {"type": "projectClosed", "project_id": "p1", "seq": 1, "data": {"id": "p1"}}
            ]

    @pytest.mark.asyncio
    async def test_closed_room_forgets_its_sequence(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        s1, _ = connect(alice)
        channels.join(s1, "p1")
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        channels.close_room("p1")
        await s1.drain()

        s2, r2 = connect(bob)
        channels.join(s2, "p1")
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        await s2.drain()

        assert [f["seq"] for f in r2.frames] == [1]

    @pytest.mark.asyncio
    async def test_emptied_room_restarts_its_sequence(self, channels: ChannelManager, connect, alice: User) -> None:
        session, recorder = connect(alice)
        channels.join(session, "p1")
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        await session.drain()
        await channels.disconnect(session)

        rejoined, r2 = connect(alice)
        channels.join(rejoined, "p1")
        channels.broadcast("p1", EventKind.TASK_UPDATED, {})
        await rejoined.drain()

        assert [f["seq"] for f in recorder.frames] == [1, 2]
        assert [f["seq"] for f in r2.frames] == [1]

    @pytest.mark.asyncio
    async def test_shutdown_disconnects_everyone(
        self, channels: ChannelManager, connect, alice: User, bob: User
    ) -> None:
        s1, _ = connect(alice)
        s2, _ = connect(bob)

        await channels.shutdown()

        assert channels.session_count == 0
        assert s1.is_closed and s2.is_closed
