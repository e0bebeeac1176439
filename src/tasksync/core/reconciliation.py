"""Client-side state reconciliation for one watched project.

A client converges on the server's state by joining the project's room
first, fetching the full snapshot second, and only then applying events.
Events that arrive while the snapshot is in flight are buffered and
replayed on top of it. Because events carry full documents, applying one
is an upsert by id:

- ``taskUpdated`` replaces the held task unless the held copy has a newer
  ``version`` (an event buffered during the fetch may predate the snapshot).
- ``taskDeleted`` removes the task and remembers its id so a late update
  cannot resurrect it.
- ``newMessage`` is inserted at its chronological slot, ignoring ids that
  are already present.

There is no replay log. After a disconnect the last known state is kept,
and reconnecting repeats the join, fetch, apply sequence from scratch.
"""

import bisect
from collections.abc import Sequence
from typing import Any, Protocol

from tasksync.core.channels import ChannelManager, Session
from tasksync.core.chat import ChatRelay
from tasksync.core.projects import ProjectService
from tasksync.core.tasks import TaskMutationPipeline
from tasksync.models import EventKind, MessageView, SyncEvent, TaskView, User
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)

TaskLike = TaskView | dict[str, Any]
MessageLike = MessageView | dict[str, Any]


class RoomLink(Protocol):
    """Control half of the duplex channel."""

    async def join(self, project_id: str) -> None: ...

    async def leave(self, project_id: str) -> None: ...


class SnapshotSource(Protocol):
    """Request/response half used for full-state fetches."""

    async def fetch_tasks(self, project_id: str) -> Sequence[TaskLike]: ...

    async def fetch_messages(self, project_id: str) -> Sequence[MessageLike]: ...


class ProjectView:
    """Local copy of one project's tasks and chat."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        self.tasks: dict[str, TaskView] = {}
        self.messages: list[MessageView] = []
        self._message_ids: set[str] = set()
        self._deleted_tasks: set[str] = set()
        self.last_seq: int | None = None
        self.stale = False
        self.closed = False

    def load_snapshot(self, tasks: Sequence[TaskLike], messages: Sequence[MessageLike]) -> None:
        """Replace all local state with a freshly fetched snapshot."""
        self.tasks = {}
        self.messages = []
        self._message_ids = set()
        self._deleted_tasks = set()
        self.last_seq = None
        self.stale = False
        self.closed = False
        for task in tasks:
            self.upsert_task(task)
        for message in messages:
            self.add_message(message)

    def apply(self, event: SyncEvent | dict[str, Any]) -> bool:
        """Apply one room event.

        Returns:
            True if local state changed
        """
        if isinstance(event, dict):
            event = SyncEvent.model_validate(event)
        if event.project_id != self.project_id:
            return False

        if self.last_seq is not None and event.seq > self.last_seq + 1:
            # An event was lost in transit; only a full resync can repair it
            self.stale = True
            logger.warning(
                "event_gap_detected",
                project_id=self.project_id,
                expected_seq=self.last_seq + 1,
                received_seq=event.seq,
            )
        self.last_seq = event.seq if self.last_seq is None else max(self.last_seq, event.seq)

        if event.type == EventKind.TASK_UPDATED:
            return self.upsert_task(event.data)
        if event.type == EventKind.TASK_DELETED:
            return self.remove_task(event.data["id"])
        if event.type == EventKind.NEW_MESSAGE:
            return self.add_message(event.data)
        if event.type == EventKind.PROJECT_CLOSED:
            self.closed = True
            return True
        return False

    def upsert_task(self, task: TaskLike) -> bool:
        task = task if isinstance(task, TaskView) else TaskView.model_validate(task)
        if task.project_id != self.project_id or task.id in self._deleted_tasks:
            return False
        current = self.tasks.get(task.id)
        if current is not None and current.version > task.version:
            return False
        self.tasks[task.id] = task
        return current != task

    def remove_task(self, task_id: str) -> bool:
        self._deleted_tasks.add(task_id)
        return self.tasks.pop(task_id, None) is not None

    def add_message(self, message: MessageLike) -> bool:
        message = message if isinstance(message, MessageView) else MessageView.model_validate(message)
        if message.project_id != self.project_id or message.id in self._message_ids:
            return False
        # bisect_right keeps arrival order among equal timestamps
        index = bisect.bisect_right([m.created_at for m in self.messages], message.created_at)
        self.messages.insert(index, message)
        self._message_ids.add(message.id)
        return True

    def task_list(self) -> list[TaskView]:
        return list(self.tasks.values())


class ReconcilingClient:
    """Keeps a ProjectView converged with the server across reconnects."""

    def __init__(self, link: RoomLink, source: SnapshotSource) -> None:
        self.link = link
        self.source = source
        self.view: ProjectView | None = None
        self.active_project: str | None = None
        self.connected = False
        self._buffer: list[SyncEvent] | None = None

    async def open(self, project_id: str) -> ProjectView:
        """Enter a project view: join, fetch, then apply buffered events."""
        if self.active_project is not None and self.active_project != project_id:
            await self.close()

        view = self.view if self.view is not None and self.view.project_id == project_id else ProjectView(project_id)
        self.active_project = project_id
        self._buffer = []
        try:
            await self.link.join(project_id)
            tasks = await self.source.fetch_tasks(project_id)
            messages = await self.source.fetch_messages(project_id)
        except BaseException:
            self._buffer = None
            raise

        view.load_snapshot(tasks, messages)
        buffered, self._buffer = self._buffer, None
        for event in buffered:
            view.apply(event)

        self.view = view
        self.connected = True
        logger.info(
            "project_view_synced",
            project_id=project_id,
            tasks=len(view.tasks),
            messages=len(view.messages),
            replayed=len(buffered),
        )
        return view

    async def on_event(self, frame: SyncEvent | dict[str, Any]) -> None:
        """Handle one frame pushed by the server."""
        event = frame if isinstance(frame, SyncEvent) else SyncEvent.model_validate(frame)
        if event.project_id != self.active_project:
            return
        if self._buffer is not None:
            self._buffer.append(event)
            return
        if self.view is None:
            return

        self.view.apply(event)
        if self.view.stale and self.connected:
            await self.open(event.project_id)

    def on_disconnect(self) -> None:
        """Transport dropped. Local state is kept as last known."""
        self.connected = False

    async def reconnect(self) -> ProjectView | None:
        """Full resync of the active project after the transport is back."""
        if self.active_project is None:
            return None
        return await self.open(self.active_project)

    async def close(self) -> None:
        """Leave the active project's room and forget its state."""
        if self.active_project is not None and self.connected:
            await self.link.leave(self.active_project)
        self.active_project = None
        self.view = None
        self.connected = False


class InProcessLink:
    """RoomLink and SnapshotSource served directly by in-process services.

    Lets server-side consumers and tests run a ReconcilingClient without a
    network transport.
    """

    def __init__(
        self,
        user: User,
        channels: ChannelManager,
        projects: ProjectService,
        tasks: TaskMutationPipeline,
        chat: ChatRelay,
        queue_size: int = 256,
    ) -> None:
        self.user = user
        self.channels = channels
        self.projects = projects
        self.tasks = tasks
        self.chat = chat
        self.client: ReconcilingClient | None = None
        self.session = Session(user, self._deliver, queue_size=queue_size)

    def attach(self, client: ReconcilingClient) -> None:
        self.client = client

    def connect(self) -> None:
        self.channels.connect(self.session)

    async def disconnect(self) -> None:
        await self.channels.disconnect(self.session)
        if self.client is not None:
            self.client.on_disconnect()
        # A fresh session stands in for the next connection
        self.session = Session(self.user, self._deliver, queue_size=self.session.queue.maxsize)

    async def join(self, project_id: str) -> None:
        await self.projects.authorize_join(self.session, project_id)
        self.channels.join(self.session, project_id)

    async def leave(self, project_id: str) -> None:
        self.channels.leave(self.session, project_id)

    async def fetch_tasks(self, project_id: str) -> list[TaskView]:
        return await self.tasks.list_for_project(self.user, project_id)

    async def fetch_messages(self, project_id: str) -> list[MessageView]:
        return await self.chat.history(self.user, project_id)

    async def _deliver(self, frame: dict[str, Any]) -> None:
        if self.client is not None:
            await self.client.on_event(frame)
