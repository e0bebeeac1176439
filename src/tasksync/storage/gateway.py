"""Typed persistence gateway over a document store."""

import asyncio
import time
from collections.abc import Awaitable, Iterable
from typing import Any, TypeVar

from tasksync.core.errors import ConflictError, UnavailableError
from tasksync.models import (
    Collection,
    Message,
    MessageView,
    Project,
    Role,
    Task,
    TaskView,
    User,
    UserSummary,
)
from tasksync.storage.base import DocumentStore, VersionConflictError
from tasksync.utils.logging import get_logger
from tasksync.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

T = TypeVar("T")


class PersistenceGateway:
    """Durable access to users, projects, tasks and messages.

    Every store call is bounded by ``timeout_seconds``. A timeout or store
    failure surfaces as UnavailableError and a lost versioned write as
    ConflictError, so callers can abort before any broadcast happens.
    """

    def __init__(self, store: DocumentStore, timeout_seconds: float = 5.0) -> None:
        """Initialize gateway.

        Args:
            store: Underlying document store
            timeout_seconds: Upper bound for a single store call
        """
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def _call(self, collection: Collection, operation: str, awaitable: Awaitable[T]) -> T:
        start = time.perf_counter()
        status = "success"
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await awaitable
        except TimeoutError as e:
            status = "timeout"
            logger.error(
                "storage_timeout",
                collection=collection.value,
                operation=operation,
                timeout_seconds=self.timeout_seconds,
            )
            raise UnavailableError(f"Storage timed out during {operation} on {collection.value}") from e
        except VersionConflictError as e:
            status = "conflict"
            raise ConflictError(
                str(e),
                expected_version=e.expected,
                current_version=e.actual,
            ) from e
        except Exception as e:
            status = "error"
            logger.error(
                "storage_operation_failed",
                collection=collection.value,
                operation=operation,
                error=str(e),
            )
            raise UnavailableError(f"Storage failed during {operation} on {collection.value}") from e
        finally:
            metrics.record_storage_operation(
                collection=collection.value,
                operation=operation,
                status=status,
                duration=time.perf_counter() - start,
            )

    async def initialize(self) -> None:
        await self.store.initialize()

    async def health_check(self) -> bool:
        return await self.store.health_check()

    async def close(self) -> None:
        await self.store.close()

    # Users

    async def create_user(self, user: User) -> User:
        doc = await self._call(Collection.USERS, "insert", self.store.insert(Collection.USERS.value, user.to_document()))
        return User.from_document(doc)

    async def get_user(self, user_id: str) -> User | None:
        doc = await self._call(Collection.USERS, "get", self.store.get(Collection.USERS.value, user_id))
        return User.from_document(doc) if doc else None

    async def list_users(self) -> list[User]:
        docs = await self._call(Collection.USERS, "find", self.store.find(Collection.USERS.value))
        return [User.from_document(doc) for doc in docs]

    async def update_user_role(self, user_id: str, role: Role) -> User | None:
        doc = await self._call(
            Collection.USERS,
            "update",
            self.store.update(Collection.USERS.value, user_id, {"role": Role(role).value}),
        )
        return User.from_document(doc) if doc else None

    async def delete_user(self, user_id: str) -> bool:
        return await self._call(Collection.USERS, "delete", self.store.delete(Collection.USERS.value, user_id))

    async def describe_users(self, user_ids: Iterable[str | None]) -> dict[str, UserSummary]:
        """Resolve user ids to summaries.

        Ids whose user has been deleted map to an "Unknown user" placeholder.
        """
        summaries: dict[str, UserSummary] = {}
        for user_id in dict.fromkeys(uid for uid in user_ids if uid):
            user = await self.get_user(user_id)
            summaries[user_id] = UserSummary.of(user) if user else UserSummary.placeholder(user_id)
        return summaries

    # Projects

    async def create_project(self, project: Project) -> Project:
        doc = await self._call(
            Collection.PROJECTS, "insert", self.store.insert(Collection.PROJECTS.value, project.to_document())
        )
        return Project.from_document(doc)

    async def get_project(self, project_id: str) -> Project | None:
        doc = await self._call(Collection.PROJECTS, "get", self.store.get(Collection.PROJECTS.value, project_id))
        return Project.from_document(doc) if doc else None

    async def list_projects(self) -> list[Project]:
        docs = await self._call(Collection.PROJECTS, "find", self.store.find(Collection.PROJECTS.value))
        return [Project.from_document(doc) for doc in docs]

    async def update_project(self, project_id: str, fields: dict[str, Any]) -> Project | None:
        doc = await self._call(
            Collection.PROJECTS, "update", self.store.update(Collection.PROJECTS.value, project_id, fields)
        )
        return Project.from_document(doc) if doc else None

    async def delete_project(self, project_id: str) -> bool:
        return await self._call(
            Collection.PROJECTS, "delete", self.store.delete(Collection.PROJECTS.value, project_id)
        )

    # Tasks

    async def create_task(self, task: Task) -> Task:
        doc = await self._call(Collection.TASKS, "insert", self.store.insert(Collection.TASKS.value, task.to_document()))
        return Task.from_document(doc)

    async def get_task(self, task_id: str) -> Task | None:
        doc = await self._call(Collection.TASKS, "get", self.store.get(Collection.TASKS.value, task_id))
        return Task.from_document(doc) if doc else None

    async def list_tasks(self, project_id: str | None = None) -> list[Task]:
        filters = {"project_id": project_id} if project_id else None
        docs = await self._call(Collection.TASKS, "find", self.store.find(Collection.TASKS.value, filters))
        return [Task.from_document(doc) for doc in docs]

    async def update_task(
        self,
        task_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> Task | None:
        """Atomically set the given fields on one task.

        Only the keys in ``fields`` are written, so concurrent patches to
        different fields do not overwrite each other.
        """
        doc = await self._call(
            Collection.TASKS,
            "update",
            self.store.update(Collection.TASKS.value, task_id, fields, expected_version),
        )
        return Task.from_document(doc) if doc else None

    async def delete_task(self, task_id: str) -> bool:
        return await self._call(Collection.TASKS, "delete", self.store.delete(Collection.TASKS.value, task_id))

    # Messages

    async def create_message(self, message: Message) -> Message:
        doc = await self._call(
            Collection.MESSAGES, "insert", self.store.insert(Collection.MESSAGES.value, message.to_document())
        )
        return Message.from_document(doc)

    async def list_messages(self, project_id: str) -> list[Message]:
        docs = await self._call(
            Collection.MESSAGES,
            "find",
            self.store.find(Collection.MESSAGES.value, {"project_id": project_id}),
        )
        messages = [Message.from_document(doc) for doc in docs]
        # Stable sort keeps insertion order for equal timestamps
        return sorted(messages, key=lambda m: m.created_at)

    # Views

    async def task_views(self, tasks: list[Task]) -> list[TaskView]:
        users = await self.describe_users(task.assignee for task in tasks)
        return [
            TaskView(**task.model_dump(), assignee_user=users.get(task.assignee) if task.assignee else None)
            for task in tasks
        ]

    async def message_views(self, messages: list[Message]) -> list[MessageView]:
        users = await self.describe_users(message.sender for message in messages)
        return [MessageView(**message.model_dump(), sender_user=users[message.sender]) for message in messages]
