"""Integration fixtures: reconciling clients wired to a live in-process service."""

from collections.abc import AsyncGenerator, Callable

import pytest_asyncio

from tasksync.core.reconciliation import InProcessLink, ReconcilingClient
from tasksync.models import Project, Role, User
from tasksync.service import SyncService

ClientFactory = Callable[[User], tuple[ReconcilingClient, InProcessLink]]


@pytest_asyncio.fixture
async def team(service: SyncService) -> dict[str, User]:
    """One admin and two employees."""
    gateway = service.gateway
    return {
        "admin": await gateway.create_user(User(name="Ada", email="ada@example.com", role=Role.ADMIN)),
        "e1": await gateway.create_user(User(name="Eli", email="eli@example.com")),
        "e2": await gateway.create_user(User(name="Emma", email="emma@example.com")),
    }


@pytest_asyncio.fixture
async def launch(service: SyncService, team: dict[str, User]) -> Project:
    """Project "Launch" created by the admin with E1 as member."""
    return await service.projects.create(team["admin"], {"name": "Launch", "members": [team["e1"].id]})


@pytest_asyncio.fixture
async def make_client(service: SyncService) -> AsyncGenerator[ClientFactory, None]:
    """Factory for connected reconciling clients."""
    links: list[InProcessLink] = []

    def _make(user: User) -> tuple[ReconcilingClient, InProcessLink]:
        link = InProcessLink(
            user,
            service.channels,
            service.projects,
            service.tasks,
            service.chat,
            queue_size=service.settings.session_queue_size,
        )
        client = ReconcilingClient(link, link)
        link.attach(client)
        link.connect()
        links.append(link)
        return client, link

    yield _make

    for link in links:
        await service.channels.disconnect(link.session)
