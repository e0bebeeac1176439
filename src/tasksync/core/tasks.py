"""Task mutation pipeline: authorize, persist, then broadcast."""

import time
from typing import Any

from tasksync.core import membership
from tasksync.core.channels import Broadcaster
from tasksync.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SyncError,
    UnavailableError,
    parse_payload,
)
from tasksync.models import EventKind, Project, Task, TaskCreate, TaskPatch, TaskView, User
from tasksync.storage.gateway import PersistenceGateway
from tasksync.utils.locks import KeyedLock
from tasksync.utils.logging import get_logger
from tasksync.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class TaskMutationPipeline:
    """Applies task changes and announces them to the project's room.

    For every write the order is fixed: existence check, authorization,
    durable write, broadcast of the full task document. Nothing is
    broadcast unless the store confirmed the write, and a failing
    broadcast never fails the write.

    Writes to the same task are serialized within the process so the
    order of broadcasts matches the order of persisted versions. Racing
    patches are last-write-wins per field.
    """

    def __init__(self, gateway: PersistenceGateway, broadcaster: Broadcaster) -> None:
        """Initialize pipeline.

        Args:
            gateway: Persistence gateway
            broadcaster: Realtime fan-out (usually the ChannelManager)
        """
        self.gateway = gateway
        self.broadcaster = broadcaster
        self._locks = KeyedLock()

    async def mutate(self, user: User, task_id: str, patch: TaskPatch | dict[str, Any]) -> TaskView:
        """Apply a partial update to a task.

        Args:
            user: Caller
            task_id: Task to change
            patch: Allow-listed fields to set, optionally with expected_version

        Returns:
            Full task document after the write

        Raises:
            InvalidArgumentError: Patch names unknown fields or invalid values
            NotFoundError: Task (or its project) does not exist
            ForbiddenError: Caller is neither admin nor assignee
            ConflictError: expected_version is stale
            UnavailableError: Store failed or timed out
        """
        start = time.perf_counter()
        try:
            patch = parse_payload(TaskPatch, patch)
            async with self._locks.hold(task_id):
                task, project = await self._load(task_id)
                if not membership.can_mutate_task(user, task, project):
                    raise ForbiddenError("Only an admin or the assignee can update this task", task_id=task_id)

                changes = patch.changes()
                if not changes:
                    if patch.expected_version is not None and patch.expected_version != task.version:
                        raise ConflictError(
                            "Task has changed since it was read",
                            expected_version=patch.expected_version,
                            current_version=task.version,
                        )
                    self._record("update", "noop", start)
                    return await self._view(task)

                updated = await self.gateway.update_task(task_id, changes, patch.expected_version)
                if updated is None:
                    raise NotFoundError("Task not found", task_id=task_id)

                view = await self._view(updated)
                self._publish(project.id, EventKind.TASK_UPDATED, view.model_dump(mode="json"))
        except SyncError as e:
            self._record("update", e.code, start)
            raise

        self._record("update", "success", start)
        logger.info(
            "task_mutated",
            task_id=task_id,
            project_id=view.project_id,
            user_id=user.id,
            fields=sorted(changes),
            version=view.version,
        )
        return view

    async def create(self, user: User, project_id: str, data: TaskCreate | dict[str, Any]) -> TaskView:
        """Create a task in a project and announce it.

        New tasks start in "To-Do" unless another status is given.

        Raises:
            InvalidArgumentError: Invalid task data
            NotFoundError: Project does not exist
            ForbiddenError: Caller may not create tasks
            UnavailableError: Store failed or timed out
        """
        start = time.perf_counter()
        try:
            data = parse_payload(TaskCreate, data)
            project = await self._project(project_id)
            if not membership.can_create_task(user, project):
                raise ForbiddenError("Only an admin can create tasks", project_id=project_id)

            task = await self.gateway.create_task(Task(project_id=project.id, **data.model_dump()))
            view = await self._view(task)
            self._publish(project.id, EventKind.TASK_UPDATED, view.model_dump(mode="json"))
        except SyncError as e:
            self._record("create", e.code, start)
            raise

        self._record("create", "success", start)
        logger.info("task_created", task_id=task.id, project_id=project.id, user_id=user.id)
        return view

    async def delete(self, user: User, task_id: str) -> None:
        """Delete a task and announce the removal.

        Raises:
            NotFoundError: Task does not exist
            ForbiddenError: Caller may not delete tasks
            UnavailableError: Store failed or timed out
        """
        start = time.perf_counter()
        try:
            async with self._locks.hold(task_id):
                task, project = await self._load(task_id)
                if not membership.can_delete_task(user, task, project):
                    raise ForbiddenError("Only an admin can delete tasks", task_id=task_id)

                if not await self.gateway.delete_task(task_id):
                    raise NotFoundError("Task not found", task_id=task_id)

                self._publish(project.id, EventKind.TASK_DELETED, {"id": task_id, "project_id": project.id})
        except SyncError as e:
            self._record("delete", e.code, start)
            raise

        self._record("delete", "success", start)
        logger.info("task_deleted", task_id=task_id, project_id=project.id, user_id=user.id)

    async def get(self, user: User, task_id: str) -> TaskView:
        task, project = await self._load(task_id)
        if not membership.can_view_task(user, task, project):
            raise ForbiddenError("Not a member of this project", task_id=task_id)
        return await self._view(task)

    async def list_for_project(self, user: User, project_id: str) -> list[TaskView]:
        """Full task snapshot of one project, as fetched on (re)join."""
        project = await self._project(project_id)
        if not membership.can_view(user, project):
            raise ForbiddenError("Not a member of this project", project_id=project_id)
        return await self.gateway.task_views(await self.gateway.list_tasks(project.id))

    async def list_all(self, user: User) -> list[TaskView]:
        if not user.is_admin:
            raise ForbiddenError("Admin role required")
        return await self.gateway.task_views(await self.gateway.list_tasks())

    async def _project(self, project_id: str) -> Project:
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        return project

    async def _load(self, task_id: str) -> tuple[Task, Project]:
        task = await self.gateway.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", task_id=task_id)
        project = await self.gateway.get_project(task.project_id)
        if project is None:
            raise NotFoundError("Project for task not found", task_id=task_id, project_id=task.project_id)
        return task, project

    async def _view(self, task: Task) -> TaskView:
        # The write is already durable here, so a failed assignee lookup
        # must not keep it from being returned and broadcast.
        try:
            return (await self.gateway.task_views([task]))[0]
        except UnavailableError as e:
            logger.warning("assignee_resolution_failed", task_id=task.id, error=e.message)
            return TaskView(**task.model_dump())

    def _publish(self, project_id: str, kind: EventKind, payload: dict[str, Any]) -> None:
        try:
            self.broadcaster.broadcast(project_id, kind, payload)
        except Exception as e:
            logger.error("broadcast_failed", project_id=project_id, kind=kind.value, error=str(e))

    def _record(self, operation: str, status: str, start: float) -> None:
        metrics.record_task_mutation(operation=operation, status=status, duration=time.perf_counter() - start)
