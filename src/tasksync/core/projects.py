"""Project and user administration around the realtime core."""

from typing import Any

from tasksync.core import membership
from tasksync.core.channels import ChannelManager, Session
from tasksync.core.errors import ForbiddenError, InvalidArgumentError, NotFoundError, parse_payload
from tasksync.models import Project, ProjectCreate, ProjectPatch, Role, RoleUpdate, User, UserCreate
from tasksync.storage.gateway import PersistenceGateway
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)


class ProjectService:
    """Project lifecycle.

    Membership edits take effect on open rooms immediately: sessions whose
    user can no longer view the project are removed from its room, and a
    deleted project's room is closed. Tasks and messages of a deleted
    project are left in place.
    """

    def __init__(self, gateway: PersistenceGateway, channels: ChannelManager) -> None:
        self.gateway = gateway
        self.channels = channels

    async def create(self, user: User, data: ProjectCreate | dict[str, Any]) -> Project:
        data = parse_payload(ProjectCreate, data)
        project = await self.gateway.create_project(Project(created_by=user.id, **data.model_dump()))
        logger.info("project_created", project_id=project.id, user_id=user.id, members=len(project.members))
        return project

    async def get(self, user: User, project_id: str) -> Project:
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        if not membership.can_view(user, project):
            raise ForbiddenError("Not a member of this project", project_id=project_id)
        return project

    async def list_visible(self, user: User) -> list[Project]:
        return [p for p in await self.gateway.list_projects() if membership.can_view(user, p)]

    async def update(self, user: User, project_id: str, patch: ProjectPatch | dict[str, Any]) -> Project:
        patch = parse_payload(ProjectPatch, patch)
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        if not membership.can_manage_project(user, project):
            raise ForbiddenError("Only an admin or the creator can edit this project", project_id=project_id)

        changes = patch.changes()
        if not changes:
            return project
        updated = await self.gateway.update_project(project_id, changes)
        if updated is None:
            raise NotFoundError("Project not found", project_id=project_id)

        if "members" in changes:
            self.channels.prune(project_id, lambda session: membership.can_view(session.user, updated))

        logger.info("project_updated", project_id=project_id, user_id=user.id, fields=sorted(changes))
        return updated

    async def delete(self, user: User, project_id: str) -> None:
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        if not membership.can_manage_project(user, project):
            raise ForbiddenError("Only an admin or the creator can delete this project", project_id=project_id)

        if not await self.gateway.delete_project(project_id):
            raise NotFoundError("Project not found", project_id=project_id)
        closed = self.channels.close_room(project_id)
        logger.info("project_deleted", project_id=project_id, user_id=user.id, sessions_closed=closed)

    async def authorize_join(self, session: Session, project_id: str) -> Project:
        """Check that a session may enter a project's room."""
        project = await self.gateway.get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id=project_id)
        if not membership.can_view(session.user, project):
            raise ForbiddenError("Not a member of this project", project_id=project_id)
        return project


class UserDirectory:
    """Admin-side user management. Registration and credentials are external."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    async def authenticate(self, user_id: str | None) -> User | None:
        """Resolve an identity asserted by the auth provider."""
        if not user_id:
            return None
        return await self.gateway.get_user(user_id)

    async def list_users(self, actor: User) -> list[User]:
        self._require_admin(actor)
        return await self.gateway.list_users()

    async def create(self, actor: User | None, data: UserCreate | dict[str, Any]) -> User:
        """Create a user profile.

        ``actor`` may be None only for local bootstrapping from the CLI.
        """
        if actor is not None:
            self._require_admin(actor)
        data = parse_payload(UserCreate, data)
        user = await self.gateway.create_user(User(**data.model_dump()))
        logger.info("user_created", user_id=user.id, role=user.role)
        return user

    async def set_role(self, actor: User, user_id: str, data: RoleUpdate | dict[str, Any]) -> User:
        self._require_admin(actor)
        data = parse_payload(RoleUpdate, data)
        user = await self.gateway.update_user_role(user_id, Role(data.role))
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        logger.info("user_role_changed", user_id=user_id, role=user.role, actor_id=actor.id)
        return user

    async def delete(self, actor: User, user_id: str) -> None:
        """Delete a user. Tasks and messages keep dangling references."""
        self._require_admin(actor)
        if actor.id == user_id:
            raise InvalidArgumentError("Admins cannot delete themselves")
        if not await self.gateway.delete_user(user_id):
            raise NotFoundError("User not found", user_id=user_id)
        logger.info("user_deleted", user_id=user_id, actor_id=actor.id)

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not actor.is_admin:
            raise ForbiddenError("Admin role required")
