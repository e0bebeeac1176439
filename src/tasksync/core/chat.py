"""Chat relay: persist a project message, then broadcast it."""

from tasksync.core import membership
from tasksync.core.channels import Broadcaster
from tasksync.core.errors import ForbiddenError, InvalidArgumentError, NotFoundError, SyncError
from tasksync.models import EventKind, Message, MessageView, Project, User, UserSummary
from tasksync.storage.gateway import PersistenceGateway
from tasksync.utils.locks import KeyedLock
from tasksync.utils.logging import get_logger
from tasksync.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class ChatRelay:
    """Appends messages to a project's chat and relays them to its room.

    Sends to one project are serialized, so the persisted order and the
    broadcast order are the same sequence. Cross-sender order is the order
    in which sends reach the relay. Identical texts are not deduplicated.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        broadcaster: Broadcaster,
        max_length: int = 4000,
    ) -> None:
        """Initialize relay.

        Args:
            gateway: Persistence gateway
            broadcaster: Realtime fan-out
            max_length: Longest accepted message text
        """
        self.gateway = gateway
        self.broadcaster = broadcaster
        self.max_length = max_length
        self._locks = KeyedLock()

    async def send(self, user: User, project_id: str, text: str) -> MessageView:
        """Post a message to a project's chat.

        Returns:
            The stored message with its server id and timestamp

        Raises:
            InvalidArgumentError: Text is blank or too long
            NotFoundError: Project does not exist
            ForbiddenError: Caller cannot view the project
            UnavailableError: Store failed or timed out
        """
        try:
            body = (text or "").strip()
            if not body:
                raise InvalidArgumentError("Message text must not be empty")
            if len(body) > self.max_length:
                raise InvalidArgumentError(
                    f"Message text exceeds {self.max_length} characters",
                    max_length=self.max_length,
                )

            project = await self._project(project_id)
            if not membership.can_view(user, project):
                raise ForbiddenError("Not a member of this project", project_id=project_id)

            async with self._locks.hold(project.id):
                # Timestamp is taken inside the lock so chronological and
                # persisted order agree
                message = await self.gateway.create_message(
                    Message(project_id=project.id, sender=user.id, text=body)
                )
                view = MessageView(**message.model_dump(), sender_user=UserSummary.of(user))
                try:
                    self.broadcaster.broadcast(project.id, EventKind.NEW_MESSAGE, view.model_dump(mode="json"))
                except Exception as e:
                    logger.error("broadcast_failed", project_id=project.id, kind="newMessage", error=str(e))
        except SyncError as e:
            metrics.chat_messages_total.labels(status=e.code).inc()
            raise

        metrics.chat_messages_total.labels(status="success").inc()
        logger.info("chat_message_sent", message_id=message.id, project_id=project.id, user_id=user.id)
        return view

    async def history(self, user: User, project_id: str) -> list[MessageView]:
        """Full message history of a project in creation order."""
        project = await self._project(project_id)
        if not membership.can_view(user, project):
            raise ForbiddenError("Not a member of this project", project_id=project_id)
        messages = await self.gateway.list_messages(project.id)
        return await self.gateway.message_views(messages)

    async def _project(self, project_id: str) -> Project:
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        return project
