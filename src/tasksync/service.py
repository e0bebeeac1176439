"""Wiring of the synchronization services."""

from dataclasses import dataclass

from tasksync.config import Settings
from tasksync.core.channels import ChannelManager
from tasksync.core.chat import ChatRelay
from tasksync.core.projects import ProjectService, UserDirectory
from tasksync.core.tasks import TaskMutationPipeline
from tasksync.storage import PersistenceGateway, create_store
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SyncService:
    """Every collaborator the API layer needs, built around one gateway.

    The channel manager is passed explicitly to the task pipeline and chat
    relay; nothing looks it up globally.
    """

    settings: Settings
    gateway: PersistenceGateway
    channels: ChannelManager
    tasks: TaskMutationPipeline
    chat: ChatRelay
    projects: ProjectService
    users: UserDirectory

    @classmethod
    def build(cls, settings: Settings, gateway: PersistenceGateway | None = None) -> "SyncService":
        """Assemble the services.

        Args:
            settings: Application settings
            gateway: Existing gateway (a configured one is created if None)

        Returns:
            Uninitialized service bundle; call ``start`` before use
        """
        if gateway is None:
            store = create_store(settings.store_backend, settings.sqlite_path)
            gateway = PersistenceGateway(store, timeout_seconds=settings.storage_timeout_seconds)

        channels = ChannelManager()
        return cls(
            settings=settings,
            gateway=gateway,
            channels=channels,
            tasks=TaskMutationPipeline(gateway, channels),
            chat=ChatRelay(gateway, channels, max_length=settings.message_max_length),
            projects=ProjectService(gateway, channels),
            users=UserDirectory(gateway),
        )

    async def start(self) -> None:
        await self.gateway.initialize()
        logger.info("sync_service_started", store_backend=self.settings.store_backend)

    async def stop(self) -> None:
        await self.channels.shutdown()
        await self.gateway.close()
        logger.info("sync_service_stopped")
