"""Pytest fixtures for the tasksync tests."""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from tasksync.config import Settings
from tasksync.core.channels import ChannelManager, Session
from tasksync.core.chat import ChatRelay
from tasksync.core.projects import ProjectService, UserDirectory
from tasksync.core.tasks import TaskMutationPipeline
from tasksync.models import Project, Role, Task, User
from tasksync.service import SyncService
from tasksync.storage import MemoryStore, PersistenceGateway


class Recorder:
    """Send function that keeps every frame written to it."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail
        self.delay = delay

    async def __call__(self, frame: dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("transport closed")
        self.frames.append(frame)

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [f for f in self.frames if f.get("type") == kind]


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings backed by the in-memory store."""
    return Settings(
        store_backend="memory",
        storage_timeout_seconds=1.0,
        session_queue_size=16,
        log_level="DEBUG",
        log_format="console",
        metrics_enabled=False,
    )


@pytest_asyncio.fixture
async def gateway() -> AsyncGenerator[PersistenceGateway, None]:
    """Gateway over a fresh in-memory store."""
    gw = PersistenceGateway(MemoryStore(), timeout_seconds=1.0)
    await gw.initialize()
    yield gw
    await gw.close()


@pytest_asyncio.fixture
async def channels() -> AsyncGenerator[ChannelManager, None]:
    manager = ChannelManager()
    yield manager
    await manager.shutdown()


@pytest.fixture
def pipeline(gateway: PersistenceGateway, channels: ChannelManager) -> TaskMutationPipeline:
    return TaskMutationPipeline(gateway, channels)


@pytest.fixture
def relay(gateway: PersistenceGateway, channels: ChannelManager) -> ChatRelay:
    return ChatRelay(gateway, channels, max_length=200)


@pytest.fixture
def projects(gateway: PersistenceGateway, channels: ChannelManager) -> ProjectService:
    return ProjectService(gateway, channels)


@pytest.fixture
def users(gateway: PersistenceGateway) -> UserDirectory:
    return UserDirectory(gateway)


@pytest_asyncio.fixture
async def admin(gateway: PersistenceGateway) -> User:
    return await gateway.create_user(User(name="Ada Admin", email="ada@example.com", role=Role.ADMIN))


@pytest_asyncio.fixture
async def employee(gateway: PersistenceGateway) -> User:
    return await gateway.create_user(User(name="Eve Employee", email="eve@example.com"))


@pytest_asyncio.fixture
async def outsider(gateway: PersistenceGateway) -> User:
    return await gateway.create_user(User(name="Oscar Outsider", email="oscar@example.com"))


@pytest_asyncio.fixture
async def project(gateway: PersistenceGateway, admin: User, employee: User) -> Project:
    """Project created by the admin with the employee as its only member."""
    return await gateway.create_project(Project(name="Launch", created_by=admin.id, members=[employee.id]))


@pytest_asyncio.fixture
async def task(gateway: PersistenceGateway, project: Project, employee: User) -> Task:
    """Task in ``project`` assigned to the employee."""
    return await gateway.create_task(Task(project_id=project.id, title="Write copy", assignee=employee.id))


@pytest.fixture
def connect(channels: ChannelManager):
    """Factory connecting a recording session for a user."""

    def _connect(user: User, *, fail: bool = False, delay: float = 0.0, queue_size: int = 16):
        recorder = Recorder(fail=fail, delay=delay)
        session = Session(user, recorder, queue_size=queue_size)
        channels.connect(session)
        return session, recorder

    return _connect


@pytest_asyncio.fixture
async def service(test_settings: Settings) -> AsyncGenerator[SyncService, None]:
    """Started service bundle on the in-memory store."""
    svc = SyncService.build(test_settings)
    await svc.start()
    yield svc
    await svc.stop()
