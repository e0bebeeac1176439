"""Room membership and event fan-out for connected sessions.

The channel manager is a pure addressing layer: it never checks whether a
session is allowed into a room. Authorization happens before ``join`` is
called.

Every method that touches the room map runs to completion without
awaiting, so on a single event loop no other coroutine can observe a
half-updated room. ``broadcast`` only enqueues; each session owns a writer
task that drains its queue in order. That makes a broadcast atomic for the
room (every member gets the event or the member is dropped) and keeps
delivery FIFO per room. A slow or dead session is dropped without
affecting the others.

A multi-process deployment would replace ``broadcast`` with a publish to a
shared bus whose subscribers call into each process's local manager.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from tasksync.models import EventKind, SyncEvent, User
from tasksync.models.base import new_id
from tasksync.utils.logging import get_logger
from tasksync.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

SendFunc = Callable[[dict[str, Any]], Awaitable[None]]


class Broadcaster(Protocol):
    """What the task pipeline and chat relay need from the realtime layer."""

    def broadcast(self, project_id: str, kind: EventKind, payload: dict[str, Any]) -> int: ...


class Session:
    """One connected client's transport handle."""

    def __init__(
        self,
        user: User,
        send: SendFunc,
        queue_size: int = 256,
        session_id: str | None = None,
    ) -> None:
        """Initialize session.

        Args:
            user: Authenticated user behind the connection
            send: Coroutine writing one JSON frame to the transport
            queue_size: Outbound frames buffered before the session is dropped
            session_id: Explicit identifier (generated if None)
        """
        self.id = session_id or new_id()
        self.user = user
        self._send = send
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.rooms: set[str] = set()
        self.closed = asyncio.Event()
        self.writer: asyncio.Task[None] | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()

    def offer(self, frame: dict[str, Any]) -> bool:
        """Queue a frame without waiting. Returns False if the queue is full."""
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def send(self, frame: dict[str, Any]) -> None:
        await self._send(frame)

    async def drain(self) -> None:
        """Wait until every queued frame has been written or discarded."""
        await self.queue.join()

    def discard_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self.queue.task_done()
            dropped += 1

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, user={self.user.id!r}, rooms={sorted(self.rooms)!r})"


class ChannelManager:
    """Maps sessions to project rooms and fans events out to them."""

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, Session]] = {}
        self._sessions: dict[str, Session] = {}
        self._seq: dict[str, int] = {}

    def connect(self, session: Session) -> None:
        """Register a session and start its writer.

        Must be called from within a running event loop.
        """
        if session.id in self._sessions:
            return
        self._sessions[session.id] = session
        session.writer = asyncio.create_task(self._pump(session), name=f"session-writer-{session.id}")
        metrics.active_sessions.set(len(self._sessions))
        logger.info("session_connected", session_id=session.id, user_id=session.user.id)

    def join(self, session: Session, project_id: str) -> bool:
        """Add a session to a room. Idempotent.

        Returns:
            True if the session was not already in the room
        """
        if session.is_closed:
            return False
        room = self._rooms.setdefault(project_id, {})
        if session.id in room:
            return False
        room[session.id] = session
        session.rooms.add(project_id)
        metrics.active_rooms.set(len(self._rooms))
        logger.debug("room_joined", session_id=session.id, project_id=project_id, room_size=len(room))
        return True

    def leave(self, session: Session, project_id: str) -> bool:
        """Remove a session from a room. Idempotent.

        Returns:
            True if the session was in the room
        """
        session.rooms.discard(project_id)
        room = self._rooms.get(project_id)
        if room is None or room.pop(session.id, None) is None:
            return False
        if not room:
            del self._rooms[project_id]
            # Counter restarts; new joiners start from a snapshot
            self._seq.pop(project_id, None)
        metrics.active_rooms.set(len(self._rooms))
        logger.debug("room_left", session_id=session.id, project_id=project_id)
        return True

    async def disconnect(self, session: Session) -> None:
        """Tear down a session: leave every room and stop its writer."""
        self.drop(session, reason="disconnect")
        writer = session.writer
        if writer is not None and writer is not asyncio.current_task():
            try:
                await writer
            except asyncio.CancelledError:
                pass

    def broadcast(self, project_id: str, kind: EventKind, payload: dict[str, Any]) -> int:
        """Deliver an event to every session currently in the room.

        Broadcasting to an empty room is a no-op.

        Returns:
            Number of sessions the event was queued for
        """
        metrics.broadcasts_total.labels(kind=EventKind(kind).value).inc()
        room = self._rooms.get(project_id)
        if not room:
            return 0

        seq = self._seq.get(project_id, 0) + 1
        self._seq[project_id] = seq
        frame = SyncEvent(type=kind, project_id=project_id, seq=seq, data=payload).to_frame()

        recipients = list(room.values())
        overflowed = [session for session in recipients if not session.offer(frame)]
        for session in overflowed:
            self.drop(session, reason="queue_full")

        delivered = len(recipients) - len(overflowed)
        logger.debug(
            "room_broadcast",
            project_id=project_id,
            kind=EventKind(kind).value,
            seq=seq,
            recipients=delivered,
        )
        return delivered

    def prune(self, project_id: str, keep: Callable[[Session], bool]) -> list[Session]:
        """Remove room members that no longer satisfy ``keep``.

        Returns:
            Sessions removed from the room
        """
        removed = [session for session in self.members(project_id) if not keep(session)]
        for session in removed:
            self.leave(session, project_id)
        if removed:
            logger.info("room_pruned", project_id=project_id, removed=len(removed))
        return removed

    def close_room(self, project_id: str) -> int:
        """Notify a room that its project is gone and empty it.

        Returns:
            Number of sessions that were in the room
        """
        members = self.members(project_id)
        if members:
            self.broadcast(project_id, EventKind.PROJECT_CLOSED, {"id": project_id})
        for session in members:
            self.leave(session, project_id)
        self._seq.pop(project_id, None)
        return len(members)

    def members(self, project_id: str) -> list[Session]:
        return list(self._rooms.get(project_id, {}).values())

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def shutdown(self) -> None:
        """Disconnect every session."""
        for session in list(self._sessions.values()):
            await self.disconnect(session)

    def drop(self, session: Session, reason: str) -> None:
        """Remove a session from every room and stop its writer.

        Sets ``session.closed`` so the transport serving it can close.
        """
        for project_id in list(session.rooms):
            self.leave(session, project_id)
        if self._sessions.pop(session.id, None) is None:
            return

        session.closed.set()
        discarded = session.discard_pending()
        writer = session.writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

        metrics.active_sessions.set(len(self._sessions))
        if reason == "disconnect":
            logger.info("session_disconnected", session_id=session.id, user_id=session.user.id)
        else:
            logger.warning(
                "session_dropped",
                session_id=session.id,
                user_id=session.user.id,
                reason=reason,
                discarded=discarded,
            )

    async def _pump(self, session: Session) -> None:
        while True:
            frame = await session.queue.get()
            try:
                await session.send(frame)
            except asyncio.CancelledError:
                session.queue.task_done()
                raise
            except Exception as e:
                session.queue.task_done()
                metrics.event_deliveries_total.labels(status="failed").inc()
                logger.warning("session_send_failed", session_id=session.id, error=str(e))
                self.drop(session, reason="send_failed")
                return
            session.queue.task_done()
            metrics.event_deliveries_total.labels(status="delivered").inc()
